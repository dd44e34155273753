"""
Tunable settings for cage, read from CAGE_* variables.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

SHELL_LABEL = "io.fdy.cage.shell"
TEST_LABEL = "io.fdy.cage.test"
DEFAULT_SHELL = "sh"


class CageSettings(BaseModel):
    """
    Settings shared by the CLI and the orchestrator. Every field can be set
    with the upper-cased ``CAGE_<FIELD>`` environment variable.
    """
    model_config = ConfigDict(frozen=True)

    # Hooks
    default_shell: str = DEFAULT_SHELL
    shell_label: str = SHELL_LABEL
    test_label: str = TEST_LABEL

    # Execution
    max_workers: int = Field(default=4, ge=1)
    call_timeout: Optional[float] = Field(default=None, gt=0)
    retries: int = Field(default=0, ge=0)

    # Runtime
    compose_command: str = "docker compose"
    output_dir: str = ".cage"
    project_name: Optional[str] = None
