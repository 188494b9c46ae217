"""网络工具: URL 安全校验"""

from __future__ import annotations

from urllib.parse import urlparse

from cellar.core.exceptions import ValidationError

# file:// 用于本地镜像与离线 bottle 仓库
_ALLOWED_SCHEMES = frozenset(("http", "https", "file"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https/file，防止 ftp:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https/file: {url}"
        )


def url_filename(url: str) -> str:
    """URL 路径的最后一段"""
    return urlparse(url).path.rstrip("/").split("/")[-1]
