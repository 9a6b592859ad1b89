from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from app.core.config import Settings

SELF = "'self'"
NONE = "'none'"
UNSAFE_INLINE = "'unsafe-inline'"

DIRECTIVE_ORDER = (
    "default-src",
    "base-uri",
    "script-src",
    "style-src",
    "connect-src",
    "worker-src",
    "img-src",
    "font-src",
    "object-src",
    "form-action",
    "frame-ancestors",
)


def _ordered_unique(tokens: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for token in tokens:
        value = str(token or "").strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


@dataclass(frozen=True)
class ContentSecurityPolicy:
    directives: tuple[tuple[str, tuple[str, ...]], ...]

    @classmethod
    def from_mapping(cls, directives: Mapping[str, Iterable[str]]) -> "ContentSecurityPolicy":
        known = [name for name in DIRECTIVE_ORDER if name in directives]
        extra = [name for name in directives if name not in DIRECTIVE_ORDER]
        return cls(tuple((name, _ordered_unique(directives[name])) for name in known + extra))

    def sources(self, directive: str) -> tuple[str, ...]:
        for name, tokens in self.directives:
            if name == directive:
                return tokens
        return ()

    def render(self, nonce: str | None = None) -> str:
        parts = []
        for name, tokens in self.directives:
            if name == "script-src" and nonce:
                tokens = tokens + (f"'nonce-{nonce}'",)
            parts.append(f"{name} {' '.join(tokens or (NONE,))}")
        return "; ".join(parts)


def build_content_security_policy(settings: Settings) -> ContentSecurityPolicy:
    return ContentSecurityPolicy.from_mapping(
        {
            "default-src": [SELF],
            "base-uri": [SELF],
            "script-src": [SELF, UNSAFE_INLINE, *settings.csp_script_src_urls],
            "style-src": [SELF, UNSAFE_INLINE, *settings.csp_style_src_urls],
            "connect-src": [SELF, *settings.csp_connect_src_urls],
            "worker-src": [SELF, "blob:", *settings.csp_worker_src_urls],
            "img-src": [SELF, "blob:", "data:", "https:"],
            "font-src": [SELF, *settings.csp_font_src_urls],
            "object-src": [NONE],
            "form-action": [SELF],
            "frame-ancestors": [NONE],
        }
    )
