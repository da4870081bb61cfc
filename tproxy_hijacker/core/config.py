"""
Configuration of the TPROXY intercept topology.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, field_validator, model_validator

from .errors import ConfigError

MARK_LIMIT = 2**32

# unspec, default, main, local
RESERVED_ROUTE_TABLES = {0, 253, 254, 255}

IFNAMSIZ = 16

# characters the kernel and iptables accept unquoted in an interface name
INTERFACE_NAME_PATTERN = re.compile(r"[A-Za-z0-9_.@+-]+")


class HijackConfig(BaseModel):
    """
    Immutable description of one intercept deployment.

    ``ignore_mark`` tags traffic that must not be re-intercepted and
    ``divert_mark`` tags traffic that policy routing hands to the local proxy.
    """

    model_config = {"frozen": True}

    interface_name: str
    proxy_port: int
    redirect_port: int
    route_table_id: int
    ignore_mark: int
    divert_mark: int
    table: str = "mangle"

    @field_validator("interface_name")
    @classmethod
    def validate_interface_name(cls, v):
        if not v:
            raise ValueError("Interface name must not be empty")
        if len(v) >= IFNAMSIZ:
            raise ValueError(
                f"Interface name must be at most {IFNAMSIZ - 1} characters: {v}"
            )
        if not INTERFACE_NAME_PATTERN.fullmatch(v):
            raise ValueError(f"Interface name contains invalid characters: {v}")
        if v in (".", ".."):
            raise ValueError(f"Interface name is not a valid device name: {v}")
        if v == "lo":
            raise ValueError("Interface name must not be the loopback interface")
        return v

    @field_validator("proxy_port", "redirect_port")
    @classmethod
    def validate_port(cls, v):
        if v < 1 or v > 65535:
            raise ValueError(f"Port number must be between 1 and 65535, got {v}")
        return v

    @field_validator("route_table_id")
    @classmethod
    def validate_route_table(cls, v):
        if v < 1 or v >= MARK_LIMIT:
            raise ValueError(f"Route table id must be between 1 and {MARK_LIMIT - 1}, got {v}")
        if v in RESERVED_ROUTE_TABLES:
            raise ValueError(f"Route table id {v} is reserved by the system")
        return v

    @field_validator("ignore_mark", "divert_mark")
    @classmethod
    def validate_mark(cls, v):
        if v <= 0 or v >= MARK_LIMIT:
            raise ValueError(f"Mark must be a non-zero 32-bit value, got {v}")
        return v

    @model_validator(mode="after")
    def validate_distinct_marks(self):
        if self.ignore_mark == self.divert_mark:
            raise ValueError(
                f"ignore_mark and divert_mark must differ, both are {self.divert_mark}"
            )
        return self

    @classmethod
    def example(cls) -> "HijackConfig":
        """The configuration shipped with the leicester example."""
        return cls(
            interface_name="ens33",
            proxy_port=17000,
            redirect_port=9080,
            route_table_id=133,
            ignore_mark=68,
            divert_mark=1,
        )

    def merge(self, **overrides: Any) -> "HijackConfig":
        """Return a new configuration with the non-None overrides applied."""
        data = self.export_to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return HijackConfig(**data)

    def export_to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    def export_to_yaml(self) -> str:
        import yaml

        return yaml.dump(
            {"hijack": self.export_to_dict()},
            default_flow_style=False,
            sort_keys=False,
        )

    def export_to_json(self) -> str:
        return json.dumps({"hijack": self.export_to_dict()}, indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HijackConfig":
        """Create a configuration from a flat or ``hijack:``-nested mapping."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration document must be a mapping")
        if "hijack" in data:
            data = data["hijack"]
            if not isinstance(data, dict):
                raise ConfigError("'hijack' section must be a mapping")
        return cls(**data)

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "HijackConfig":
        import yaml

        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML configuration: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_json(cls, json_content: str) -> "HijackConfig":
        try:
            data = json.loads(json_content)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON configuration: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, config_file: Path) -> "HijackConfig":
        """Load a configuration from a YAML or JSON file."""
        try:
            content = Path(config_file).read_text()
        except OSError as e:
            raise ConfigError(f"Cannot read configuration {config_file}: {e}") from e

        suffix = Path(config_file).suffix.lower()
        if suffix in [".yaml", ".yml"]:
            return cls.from_yaml(content)
        elif suffix == ".json":
            return cls.from_json(content)
        else:
            raise ConfigError(f"Unsupported configuration file format: {suffix}")


__all__ = ["HijackConfig", "RESERVED_ROUTE_TABLES"]
