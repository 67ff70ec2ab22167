import os
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic_settings import PydanticBaseSettingsSource

logger = structlog.stdlib.get_logger(__name__)

SECRET_FILE_SUFFIX = "_FILE"


def read_secret_file(setting_name: str) -> Optional[str]:
    """Read the value of ``setting_name`` from the file named by ``<NAME>_FILE``.

    Returns None when the variable is unset, points at a missing file, or
    the file cannot be read.
    """
    file_path = os.getenv(f"{setting_name}{SECRET_FILE_SUFFIX}")
    if not file_path:
        return None

    path = Path(file_path)
    if not path.is_file():
        logger.warning("Secret file does not exist", setting=setting_name, path=file_path)
        return None

    try:
        return path.read_text().strip()
    except OSError as e:
        logger.warning(
            "Could not read secret file",
            setting=setting_name,
            path=file_path,
            error=str(e),
        )
        return None


class DockerSecretsSettingsSource(PydanticBaseSettingsSource):
    """
    Settings source for Docker/Kubernetes mounted secrets.

    Example:
        SENTRY_DSN_FILE=/run/secrets/gateway_sentry_dsn
        makes SENTRY_DSN take the contents of that file.
    """

    def get_field_value(
        self, field_name: str, field_info: Any
    ) -> tuple[Any, str, bool]:
        return read_secret_file(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field_name, field_info)
            if value is not None:
                values[key] = value
        return values
