"""
Input sanitization for request body, query string and path parameters.

Rules run in a fixed order:
  1. strip_operator_keys  - drop keys starting with "$" or containing "."
                            (document-store operator / path injection)
  2. escape_markup        - HTML-escape < > " ' / in string keys and values
  3. collapse_pollution   - repeated query/form parameters keep their LAST value

The cleaned values replace request.args, request.form and request.get_json()
for the rest of the request, so handlers cannot reach the raw input.
Inputs are rewritten, never rejected. Every rule is idempotent, so running the
chain on already-clean data returns it unchanged.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from flask import Flask, Request, g, request
from werkzeug.datastructures import ImmutableMultiDict, MultiDict

Rule = Callable[[Any], Any]

_MARKUP_TABLE = str.maketrans(
    {
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#x27;",
        "/": "&#x2F;",
    }
)


def is_operator_key(key: Any) -> bool:
    return isinstance(key, str) and (key.startswith("$") or "." in key)


def strip_operator_keys(value: Any) -> Any:
    if isinstance(value, MultiDict):
        return MultiDict(
            [(k, strip_operator_keys(v)) for k, v in value.items(multi=True) if not is_operator_key(k)]
        )
    if isinstance(value, dict):
        return {k: strip_operator_keys(v) for k, v in value.items() if not is_operator_key(k)}
    if isinstance(value, list):
        return [strip_operator_keys(v) for v in value]
    return value


def escape_markup(value: Any) -> Any:
    if isinstance(value, str):
        return value.translate(_MARKUP_TABLE)
    if isinstance(value, MultiDict):
        return MultiDict([(escape_markup(k), escape_markup(v)) for k, v in value.items(multi=True)])
    if isinstance(value, dict):
        return {escape_markup(k): escape_markup(v) for k, v in value.items()}
    if isinstance(value, list):
        return [escape_markup(v) for v in value]
    return value


def make_pollution_rule(whitelist: Iterable[str] = ()) -> Rule:
    """
    Build rule 3. Names in `whitelist` may legitimately repeat and keep every
    value as a list; everything else collapses to the last occurrence.
    Only multi-valued sources (query string, form body) are affected.
    """
    allowed = frozenset(whitelist)

    def collapse_pollution(value: Any) -> Any:
        if not isinstance(value, MultiDict):
            return value
        result: Dict[str, Any] = {}
        for key in value.keys():
            values = value.getlist(key)
            if key in allowed and len(values) > 1:
                result[key] = values
            else:
                result[key] = values[-1]
        return result

    return collapse_pollution


collapse_pollution = make_pollution_rule()


_UNSET = object()


class SanitizingRequest(Request):
    """Request whose JSON body can be swapped for its sanitized copy."""

    sanitized_json: Any = _UNSET

    def get_json(self, force: bool = False, silent: bool = False, cache: bool = True) -> Any:
        if self.sanitized_json is not _UNSET:
            return self.sanitized_json
        return super().get_json(force=force, silent=silent, cache=cache)


@dataclass(frozen=True)
class SanitizedRequest:
    body: Any = None
    query: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)


class SanitizationChain:
    """Ordered list of named, pure rules."""

    def __init__(self, rules: Optional[Sequence[Tuple[str, Rule]]] = None, whitelist: Iterable[str] = ()):
        if rules is None:
            rules = (
                ("operator_keys", strip_operator_keys),
                ("markup", escape_markup),
                ("parameter_pollution", make_pollution_rule(whitelist)),
            )
        self.rules: List[Tuple[str, Rule]] = list(rules)

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.rules]

    def apply(self, value: Any) -> Any:
        for _name, rule in self.rules:
            value = rule(value)
        return value

    # -----------------------------
    # Pipeline stage hooks
    # -----------------------------

    def init_app(self, app: Flask) -> None:
        app.request_class = SanitizingRequest

    def before_request(self) -> None:
        if request.view_args:
            clean_params = self.apply(dict(request.view_args))
            request.view_args.clear()
            request.view_args.update(clean_params)

        body = self.apply(_raw_body())
        query = self.apply(MultiDict(request.args))

        request.args = ImmutableMultiDict(query)
        if _is_form():
            request.form = ImmutableMultiDict(body)
        elif body is not None:
            request.sanitized_json = body

        g.sanitized = SanitizedRequest(
            body=body,
            query=query,
            params=dict(request.view_args or {}),
        )
        return None


def _is_form() -> bool:
    return request.mimetype in ("application/x-www-form-urlencoded", "multipart/form-data")


def _raw_body() -> Any:
    if request.is_json:
        return request.get_json(silent=True)
    if _is_form():
        return MultiDict(request.form)
    return None


def get_sanitized() -> SanitizedRequest:
    """Sanitized input of the current request, for route handlers."""
    return getattr(g, "sanitized", None) or SanitizedRequest()
