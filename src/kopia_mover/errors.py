from __future__ import annotations


class KubernetesAuthenticationError(RuntimeError):
    """Raised when Kubernetes authentication configuration fails."""


class KubernetesOperationError(RuntimeError):
    """Raised when a Kubernetes API call needed by the mover fails."""


class SecretValidationError(RuntimeError):
    """Raised when a referenced Secret is missing or lacks required keys."""


class ConfigMapValidationError(RuntimeError):
    """Raised when a referenced ConfigMap is missing or lacks required keys."""


class RepositoryValidationError(RuntimeError):
    """Raised when the repository Secret or repository PVC is unusable."""


class CustomCAValidationError(RuntimeError):
    """Raised when the custom CA reference cannot be resolved."""


class PolicyConfigValidationError(RuntimeError):
    """Raised when the policy configuration is invalid."""


class IdentityConfigurationError(ValueError):
    """Raised when a destination does not describe which snapshots to restore."""


class CopyTriggerTimeoutError(RuntimeError):
    """Raised by volume handlers when the user has not acknowledged a copy trigger in time."""


class JobRecreateError(RuntimeError):
    def __init__(self, *, job_name: str, reason: str) -> None:
        super().__init__(f"unable to update object. Deleting object so it can be recreated: {job_name}: {reason}")
        self.job_name = job_name
