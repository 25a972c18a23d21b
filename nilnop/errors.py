"""
nilnop/errors.py
════════════════

Exception hierarchy for nilnop.

Configuration problems (bad target specifications) are raised while the
run is being set up, before any function is analysed.  Malformed IR
dumps raise :class:`IRLoadError`.  The analysis engine itself raises
nothing for well-formed IR.

::

    NilnopError
    ├── ConfigurationError
    │   ├── InvalidFuncNameError
    │   ├── NotAFunctionError
    │   ├── InvalidTargetError
    │   └── TargetSpecSyntaxError
    └── IRLoadError
"""

from __future__ import annotations

from typing import Any, Optional


class NilnopError(Exception):
    """Base exception for all nilnop errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message


# ───────────────────────────────────────────────────────────────────────────────
# CONFIGURATION ERRORS
# ───────────────────────────────────────────────────────────────────────────────

class ConfigurationError(NilnopError):
    """A target specification cannot be used."""


class InvalidFuncNameError(ConfigurationError):
    """A method target name contains more than one ``.`` separator."""

    def __init__(self, func_name: str) -> None:
        super().__init__(f"invalid FuncName {func_name}")
        self.func_name = func_name


class NotAFunctionError(ConfigurationError):
    """A target names an object that exists but is not a function."""

    def __init__(self, pkg_path: str, func_name: str) -> None:
        super().__init__(f"{pkg_path}.{func_name} is not a function.")
        self.pkg_path = pkg_path
        self.func_name = func_name


class InvalidTargetError(ConfigurationError):
    """A target carries an argument position that can never exist."""

    def __init__(self, target: Any, reason: str) -> None:
        super().__init__(f"invalid target {target}: {reason}")
        self.target = target
        self.reason = reason


class TargetSpecSyntaxError(ConfigurationError):
    """A ``PKG:NAME[:POS]`` string or a target file could not be parsed."""

    def __init__(
        self,
        text: str,
        detail: str = "",
        cause: Optional[Exception] = None,
    ) -> None:
        message = f"malformed target specification {text!r}"
        if detail:
            message += f": {detail}"
        super().__init__(message, cause=cause)
        self.text = text
        self.detail = detail


# ───────────────────────────────────────────────────────────────────────────────
# IR LOADING ERRORS
# ───────────────────────────────────────────────────────────────────────────────

class IRLoadError(NilnopError):
    """The S-expression IR dump is malformed."""

    def __init__(
        self,
        message: str,
        form: Any = None,
        source: str = "",
        cause: Optional[Exception] = None,
    ) -> None:
        text = message
        if source:
            text = f"{source}: {text}"
        if form is not None:
            text += f" (in {form!r})"
        super().__init__(text, cause=cause)
        self.form = form
        self.source = source


__all__ = [
    "NilnopError",
    "ConfigurationError",
    "InvalidFuncNameError",
    "NotAFunctionError",
    "InvalidTargetError",
    "TargetSpecSyntaxError",
    "IRLoadError",
]
