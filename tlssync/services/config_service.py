"""
Configuration service for loading and validating application settings.
"""
import os
import re
import ipaddress
import configparser
from datetime import timedelta
from typing import Optional, Dict, Any, List, Iterable
import logging

from cryptography import x509

from ..models.config import Config, ConfigValidationError, ConfigValidationResult
from ..models.certificate import CertificateSpec, SecretIdentifier

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration such as "1h", "30m" or "1h30m10.5s".

    An empty string or "0" is zero. Negative durations are rejected.

    Raises:
        ValueError: If the string is not a valid duration
    """
    value = (value or "").strip()
    if value in ("", "0"):
        return timedelta(0)

    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(value):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_SECONDS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(value):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=seconds)


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated string, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_labels(values: Iterable[str]) -> Dict[str, str]:
    """
    Parse key=value label strings into a dict.

    Raises:
        ValueError: If an entry has no "=" or an empty key
    """
    labels = {}
    for item in values:
        key, sep, val = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"invalid label {item!r}, expected key=value")
        labels[key] = val.strip()
    return labels


class ConfigService:
    """Service for loading and validating application configuration."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def load_config(self, config_path: Optional[str] = None,
                    overrides: Optional[Dict[str, Any]] = None) -> Config:
        """
        Load configuration from a property file and apply overrides.

        Args:
            config_path: Path to the configuration file (optional)
            overrides: Field values that take precedence over the file,
                typically from command-line flags

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid or has validation errors
        """
        config_data = {}
        if config_path:
            if not os.path.exists(config_path):
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            config_data = self._load_config_file(config_path)

        config = self._create_config_from_data(config_data, overrides or {})

        validation_result = self.validate_config(config)

        if validation_result.has_errors():
            error_summary = validation_result.get_error_summary()
            raise ValueError(f"Configuration validation failed:\n{error_summary}")

        if validation_result.has_warnings():
            warning_summary = validation_result.get_error_summary()
            self.logger.warning(f"Configuration warnings:\n{warning_summary}")

        return config

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration data from file."""
        config_parser = configparser.ConfigParser()

        try:
            config_parser.read(config_path, encoding="utf-8")
        except configparser.Error as e:
            raise ValueError(f"Failed to parse configuration file: {e}")

        # Use section.key format for namespacing
        config_data = {}
        for section in config_parser.sections():
            for key, value in config_parser.items(section):
                config_data[f"{section}.{key}"] = value

        for key, value in config_parser.defaults().items():
            config_data.setdefault(key, value)

        return config_data

    def _create_config_from_data(self, config_data: Dict[str, Any],
                                 overrides: Dict[str, Any]) -> Config:
        """Create Config object from configuration data."""
        config_mapping = {
            # CA settings
            "ca.cert_path": ("ca_cert_path", str),
            "ca.key_path": ("ca_key_path", str),
            "ca.validate": ("validate_ca", bool),

            # Certificate settings
            "certificate.subject": ("subject", str),
            "certificate.expire_days": ("expire_days", int),
            "certificate.dns": ("dns_names", list),
            "certificate.ip": ("ip_addresses", list),
            "certificate.key_size": ("key_size", int),
            "certificate.renew_before": ("renew_before", str),

            # Secret settings
            "secret.name": ("secret_name", str),
            "secret.namespace": ("secret_namespace", str),
            "secret.labels": ("labels", dict),

            # Sync settings
            "sync.interval": ("interval", str),

            # Kubernetes settings
            "kubernetes.api_server": ("kube_api_server", str),
            "kubernetes.token_path": ("kube_token_path", str),
            "kubernetes.ca_cert_path": ("kube_ca_cert_path", str),
            "kubernetes.verify_tls": ("kube_verify_tls", bool),
            "kubernetes.request_timeout_seconds": ("request_timeout_seconds", int),
            "kubernetes.max_retry_attempts": ("max_retry_attempts", int),

            # Application settings
            "app.log_level": ("log_level", str),
            "app.log_file_path": ("log_file_path", str),
        }

        config_kwargs = {}

        for config_key, raw_value in config_data.items():
            if config_key in config_mapping:
                field_name, field_type = config_mapping[config_key]
                try:
                    config_kwargs[field_name] = self._convert(raw_value, field_type)
                except (ValueError, TypeError) as e:
                    raise ValueError(f"Invalid value for {config_key}: {raw_value} ({e})")

        for field_name, value in overrides.items():
            if value is not None:
                config_kwargs[field_name] = value

        return Config(**config_kwargs)

    def _convert(self, raw_value: Any, field_type: type) -> Any:
        """Convert a raw file value to the field's type."""
        if field_type == bool:
            return self._parse_bool(raw_value)
        if field_type == int:
            return int(raw_value)
        if field_type == list:
            return split_list(raw_value)
        if field_type == dict:
            return parse_labels(split_list(raw_value))
        return str(raw_value) if raw_value is not None else None

    def _parse_bool(self, value: Any) -> bool:
        """Parse boolean value from string."""
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "1", "on", "enabled")
        return bool(value)

    def validate_config(self, config: Config) -> ConfigValidationResult:
        """
        Validate configuration settings.

        Args:
            config: Configuration object to validate

        Returns:
            ConfigValidationResult with validation results
        """
        errors = []
        warnings = []

        if not config.subject:
            errors.append(ConfigValidationError(
                "subject",
                "Missing required subject (certificate Common Name)"
            ))

        for name in config.dns_names:
            try:
                x509.DNSName(name)
            except ValueError:
                errors.append(ConfigValidationError(
                    "dns_names",
                    f"DNS name must be an ASCII (A-label) name: {name}"
                ))

        for ip in config.ip_addresses:
            try:
                ipaddress.ip_address(ip)
            except ValueError:
                errors.append(ConfigValidationError(
                    "ip_addresses",
                    f"Not a valid IP address: {ip}"
                ))

        for field_name, value in (("interval", config.interval), ("renew_before", config.renew_before)):
            try:
                parse_duration(value)
            except ValueError as e:
                errors.append(ConfigValidationError(field_name, f"{field_name} was not a valid duration: {e}"))

        for field_name, path in (("ca_cert_path", config.ca_cert_path), ("ca_key_path", config.ca_key_path)):
            if not path:
                errors.append(ConfigValidationError(field_name, f"{field_name} is required"))
            elif not os.path.exists(path):
                errors.append(ConfigValidationError(field_name, f"CA file not found: {path}"))

        if not config.secret_name:
            if config.interval:
                warnings.append(ConfigValidationError(
                    "interval",
                    "Interval is ignored when no secret name is set",
                    "warning"
                ))
            if config.labels:
                warnings.append(ConfigValidationError(
                    "labels",
                    "Labels are ignored when no secret name is set",
                    "warning"
                ))

        try:
            renew_before = parse_duration(config.renew_before)
        except ValueError:
            renew_before = timedelta(0)
        if renew_before >= timedelta(days=config.expire_days):
            warnings.append(ConfigValidationError(
                "renew_before",
                "Renewal window is not shorter than the certificate lifetime; every cycle will regenerate",
                "warning"
            ))

        if config.kube_token_path and not os.path.exists(config.kube_token_path):
            warnings.append(ConfigValidationError(
                "kube_token_path",
                f"Token file does not exist: {config.kube_token_path}",
                "warning"
            ))

        if config.log_file_path:
            log_dir = os.path.dirname(config.log_file_path)
            if log_dir and not os.path.exists(log_dir):
                warnings.append(ConfigValidationError(
                    "log_file_path",
                    f"Log directory does not exist: {log_dir}",
                    "warning"
                ))

        all_issues = errors + warnings
        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=all_issues,
            warnings=[]
        )

    def build_certificate_spec(self, config: Config) -> CertificateSpec:
        """Build the desired certificate spec from configuration."""
        return CertificateSpec(
            subject=config.subject,
            dns_names=tuple(config.dns_names),
            ip_addresses=tuple(ipaddress.ip_address(ip) for ip in config.ip_addresses),
            days_valid=config.expire_days,
            labels=dict(config.labels),
        )

    def build_secret_identifier(self, config: Config, namespace: str) -> SecretIdentifier:
        """Build the identifier of the target secret."""
        return SecretIdentifier(name=config.secret_name, namespace=namespace)

    def create_default_config_file(self, config_path: str) -> None:
        """
        Create a default configuration file with example settings.

        Args:
            config_path: Path where to create the config file
        """
        config_content = """# TLS Secret Sync Configuration File

[ca]
cert_path = ./ca.pem
key_path = ./ca-key.pem
validate = false

[certificate]
subject = svc.example.com
expire_days = 60
dns = svc.example.com, svc.default.svc.cluster.local
ip =
key_size = 2048
renew_before =

[secret]
name = svc-tls
namespace =
labels = app=svc

[sync]
interval = 1h

[kubernetes]
api_server =
verify_tls = true
request_timeout_seconds = 30
max_retry_attempts = 3

[app]
log_level = INFO
log_file_path =
"""

        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            f.write(config_content)

        self.logger.info(f"Created default configuration file: {config_path}")
