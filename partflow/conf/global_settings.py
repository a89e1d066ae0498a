from __future__ import annotations

import os
from types import UnionType
from typing import (
    Annotated,
    Any,
    ClassVar,
    Dict,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from partflow import __version__
from partflow.logging import LoggingConfig, StandardLoggingConfig
from partflow.types import Doc


def safe_get_type_hints(cls: type) -> dict[str, Any]:
    """
    Safely get type hints for a class, falling back to the raw annotations.
    """
    try:
        return get_type_hints(cls, include_extras=True)
    except Exception:
        return cls.__annotations__


class BaseSettings:
    """
    Base of all the settings for any system.
    """

    __type_hints__: ClassVar[Dict[str, Any] | None] = None
    __truthy__: ClassVar[set[str]] = {"true", "1", "yes", "on", "y"}
    __env_prefix__: ClassVar[str] = ""

    def __init__(self, **kwargs: Any) -> None:
        """
        Loads every annotated attribute, giving precedence to an environment
        variable named after it in uppercase, prefixed with `__env_prefix__`,
        then to `kwargs`, then to the class default.
        """
        cls = self.__class__
        if cls.__dict__.get("__type_hints__") is None:
            cls.__type_hints__ = safe_get_type_hints(cls)

        if kwargs:
            for key, value in kwargs.items():
                setattr(self, key, value)

        for key, typ in cls.__type_hints__.items():
            if key.startswith("__"):
                continue
            base_type = self._extract_base_type(typ)

            env_value = os.getenv(f"{self.__env_prefix__}{key.upper()}", None)
            if env_value is not None:
                value = self._cast(env_value, base_type)
            else:
                value = getattr(self, key, None)
            setattr(self, key, value)

        self.post_init()

    def post_init(self) -> None:
        """
        Post-initialization method that can be overridden by subclasses.
        """
        ...

    def _extract_base_type(self, typ: Any) -> Any:
        origin = get_origin(typ)
        if origin is Annotated:
            return get_args(typ)[0]
        return typ

    def _cast(self, value: str, typ: type[Any]) -> Any:
        """
        Casts the value to the specified type.
        If the type is `bool`, it checks for common truthy values.

        Raises:
            ValueError: If the value cannot be cast to the specified type.
        """
        try:
            origin = get_origin(typ)
            if origin is Union or origin is UnionType:
                non_none_types = [t for t in get_args(typ) if t is not type(None)]
                if len(non_none_types) == 1:
                    typ = non_none_types[0]
                else:
                    raise ValueError(f"Cannot cast to ambiguous Union type: {typ}")

            if typ is bool or str(typ) == "bool":
                return value.lower() in self.__truthy__
            return typ(value)
        except Exception:
            type_name = getattr(typ, "__name__", str(typ))
            raise ValueError(f"Cannot cast value '{value}' to type '{type_name}'") from None

    def dict(self, exclude_none: bool = False, upper: bool = False) -> dict[str, Any]:
        """
        Dumps all the settings into a python dictionary.
        """
        result = {}
        for key in self.__class__.__type_hints__ or {}:
            if key.startswith("__"):
                continue
            value = getattr(self, key, None)
            if exclude_none and value is None:
                continue
            result[key.upper() if upper else key] = value
        return result


class Settings(BaseSettings):
    __env_prefix__: ClassVar[str] = "PARTFLOW_"

    version: Annotated[
        str,
        Doc(
            """
            The version of partflow in use.
            """
        ),
    ] = __version__
    field_size: Annotated[
        int,
        Doc(
            """
            Maximum number of bytes kept for a field value. Longer values are
            cut and delivered with `value_truncated` set.
            """
        ),
    ] = 1024 * 1024
    field_name_size: Annotated[
        int,
        Doc(
            """
            Maximum number of bytes kept for a field name. Longer names are
            cut and delivered with `name_truncated` set.
            """
        ),
    ] = 100
    file_size: Annotated[
        float,
        Doc(
            """
            Maximum number of bytes delivered through a single file stream.
            Anything past it is dropped and the stream is flagged `truncated`.
            """
        ),
    ] = float("inf")
    stream_buffer_size: Annotated[
        int,
        Doc(
            """
            Number of chunks a paused or slow file stream may hold before the
            emitter stops reading from the request body.
            """
        ),
    ] = 16
    default_charset: Annotated[
        str,
        Doc(
            """
            Charset used to decode names and values when the request does
            not declare one.
            """
        ),
    ] = "utf-8"
    preserve_path: Annotated[
        bool,
        Doc(
            """
            Keep the full client supplied path in `filename`. By default only
            the basename is kept.
            """
        ),
    ] = False
    logging_level: Annotated[
        str,
        Doc(
            """
            The logging level used by the `StandardLoggingConfig`.
            """
        ),
    ] = "INFO"

    @property
    def logging_config(self) -> LoggingConfig | None:
        """
        The `LoggingConfig` applied by `setup_logging()` when none is given.
        """
        return StandardLoggingConfig(level=self.logging_level)
