"""
Operational hooks derived from a service's labels.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict
from .errors import HookMissingError


class ToolHooks(BaseModel):
    """
    Commands cage runs inside a service. Both strings are handed to the
    runtime adapter exactly as they appear in the pod file.
    """
    model_config = ConfigDict(frozen=True)

    service: str
    shell_command: str
    test_command: Optional[str] = None

    def require_test_command(self) -> str:
        """
        :return: The configured test command.
        :raises HookMissingError: If the service defines no test command.
        """
        if self.test_command is None:
            raise HookMissingError(self.service, "test")
        return self.test_command
