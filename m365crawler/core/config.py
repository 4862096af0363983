"""Configuration settings for the m365crawler runtime.

Wraps environment variables and provides defaults.
"""

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class.

    Attributes:
    ----------
        PROJECT_NAME (str): The name of the project.
        LOCAL_DEVELOPMENT (bool): Whether the crawler is running locally. Switches
            log output from JSON to plain text.
        LOG_LEVEL (str): The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        GRAPH_BASE_URL (str): Base URL of the Microsoft Graph API.
        GRAPH_REQUEST_TIMEOUT (float): Per-request timeout in seconds.
        CRAWLER_SHUTDOWN_TIMEOUT (float): Seconds to wait for queued crawl tasks
            to drain before the worker tasks are cancelled.
        CRAWLER_MAX_POOL_FACTOR (int): Upper bound on the worker pool, as a multiple
            of the number of CPUs.
        IDENTITY_RETRY_MIN_WAIT (float): Lower clamp for Retry-After waits.
        IDENTITY_RETRY_MAX_WAIT (float): Upper clamp for Retry-After waits.
        USER_ROLE_PREFIX (str): Prefix of encoded user role tokens.
        GROUP_ROLE_PREFIX (str): Prefix of encoded group role tokens.
        ROLE_FIELD (str): Output field holding the role list.
        EVERYONE_IN_TENANT_GROUP (str): Group id granted by organization-scope links.
    """

    PROJECT_NAME: str = "m365crawler"
    LOCAL_DEVELOPMENT: bool = False

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    # Graph configuration
    GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
    GRAPH_REQUEST_TIMEOUT: float = 60.0

    # Crawl configuration
    CRAWLER_SHUTDOWN_TIMEOUT: float = 60.0
    CRAWLER_MAX_POOL_FACTOR: int = 2
    IDENTITY_RETRY_MIN_WAIT: float = 2.0
    IDENTITY_RETRY_MAX_WAIT: float = 15.0

    # Role encoding
    USER_ROLE_PREFIX: str = "1"
    GROUP_ROLE_PREFIX: str = "2"
    ROLE_FIELD: str = "role"
    EVERYONE_IN_TENANT_GROUP: str = "EVERYONE_IN_TENANT"

    @field_validator("GRAPH_BASE_URL", mode="before")
    def strip_trailing_slash(cls, v: str) -> str:
        """Drop a trailing slash so relative paths can be appended verbatim.

        Args:
            v: The configured base URL.

        Returns:
            str: The base URL without a trailing slash.
        """
        return v.rstrip("/") if isinstance(v, str) else v

    @field_validator("IDENTITY_RETRY_MAX_WAIT", mode="after")
    def validate_retry_window(cls, v: float, info: ValidationInfo) -> float:
        """Ensure the Retry-After clamp window is not inverted.

        Args:
        ----
            v (float): The upper clamp.
            info (ValidationInfo): The validation context containing all field values.

        Returns:
        -------
            float: The validated upper clamp.

        Raises:
        ------
            ValueError: If the upper clamp is below the lower clamp.
        """
        min_wait = info.data.get("IDENTITY_RETRY_MIN_WAIT", 2.0)
        if v < min_wait:
            raise ValueError("IDENTITY_RETRY_MAX_WAIT must be >= IDENTITY_RETRY_MIN_WAIT")
        return v


settings = Settings()
