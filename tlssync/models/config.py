"""
Configuration data models for the TLS secret sync application.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class Config:
    """Main configuration class containing all application settings."""

    # CA settings
    ca_cert_path: str = "./ca.pem"
    ca_key_path: str = "./ca-key.pem"
    validate_ca: bool = False

    # Certificate settings
    subject: str = ""
    expire_days: int = 60
    dns_names: List[str] = field(default_factory=list)
    ip_addresses: List[str] = field(default_factory=list)
    key_size: int = 2048
    renew_before: str = ""

    # Secret settings
    secret_name: str = ""
    secret_namespace: str = ""
    labels: Dict[str, str] = field(default_factory=dict)

    # Sync settings
    interval: str = ""

    # Kubernetes API settings
    kube_api_server: str = ""
    kube_token_path: Optional[str] = None
    kube_ca_cert_path: Optional[str] = None
    kube_verify_tls: bool = True
    request_timeout_seconds: int = 30
    max_retry_attempts: int = 3

    # Application settings
    log_level: str = "INFO"
    log_file_path: str = ""

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_types()

    def _validate_types(self):
        """Ensure all configuration values have correct types."""
        if not isinstance(self.expire_days, int) or self.expire_days <= 0:
            raise ValueError("expire_days must be a positive integer")

        if not isinstance(self.key_size, int) or self.key_size < 2048:
            raise ValueError("key_size must be an integer of at least 2048")

        if not isinstance(self.max_retry_attempts, int) or self.max_retry_attempts < 0:
            raise ValueError("max_retry_attempts must be a non-negative integer")

        if not isinstance(self.request_timeout_seconds, int) or self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be a positive integer")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")

    @property
    def has_target(self) -> bool:
        """Whether a secret is configured; without one the cert goes to stdout."""
        return bool(self.secret_name)


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    severity: str = "error"  # error, warning

    def __str__(self):
        return f"{self.severity.upper()}: {self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: List[ConfigValidationError]
    warnings: List[ConfigValidationError]

    def __post_init__(self):
        """Separate errors and warnings."""
        all_issues = self.errors + self.warnings
        self.errors = [e for e in all_issues if e.severity == "error"]
        self.warnings = [e for e in all_issues if e.severity == "warning"]

    def has_errors(self) -> bool:
        """Check if there are any validation errors."""
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        """Check if there are any validation warnings."""
        return len(self.warnings) > 0

    def get_error_summary(self) -> str:
        """Get a formatted summary of all errors and warnings."""
        lines = []

        if self.errors:
            lines.append("Configuration Errors:")
            for error in self.errors:
                lines.append(f"  - {error}")

        if self.warnings:
            lines.append("Configuration Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines) if lines else "Configuration is valid"
