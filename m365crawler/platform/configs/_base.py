"""Base config class."""

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict


class BaseConfig(BaseModel):
    """Base config class built from a flat key/value parameter map.

    Crawl parameters arrive as strings from the hosting crawler's configuration.
    Known keys are validated (and coerced) into typed fields; every key, known
    or not, stays available in `params` so the field-mapping evaluator can read it.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    params: dict[str, Any] = {}

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "BaseConfig":
        """Build a config from a flat parameter map.

        Blank string values are treated as unset so field defaults apply.

        Args:
            params: The raw parameter map.

        Returns:
            The validated config.

        Example:
            ```python
            >>> CrawlConfig.from_params({"number_of_threads": "4", "ignore_error": "true"})
            CrawlConfig(number_of_threads=4, ignore_error=True, ...)
            ```
        """
        raw = dict(params or {})
        values = {
            key: value
            for key, value in raw.items()
            if key in cls.model_fields
            and key != "params"
            and not (isinstance(value, str) and not value.strip())
        }
        return cls(params=raw, **values)
