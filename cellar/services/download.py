"""下载与校验

源码包与 bottle 的获取统一走这里:
  1. 缓存目录中已有且校验和通过 → 直接返回
  2. 否则下载到 <name>.part，校验通过后原子重命名
  3. 校验和不匹配时删除已下载文件并抛 ChecksumMismatchError
"""

from __future__ import annotations

import hashlib
import logging
import os
import urllib.error
import urllib.request
from pathlib import Path

from cellar.core.exceptions import ChecksumMismatchError, DownloadError, ValidationError
from cellar.utils.net import url_filename, validate_url_scheme

logger = logging.getLogger(__name__)


def file_sha256(path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


class Downloader:
    """带本地缓存的下载器"""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)

    def cached(self, filename: str) -> Path | None:
        path = self.cache_dir / filename
        return path if path.is_file() else None

    def fetch(self, url: str, *, sha256: str = "", filename: str = "") -> Path:
        filename = filename or url_filename(url)
        if not filename:
            raise DownloadError(url, "无法从 URL 解析文件名")
        dest = self.cache_dir / filename

        if dest.is_file():
            if not sha256 or file_sha256(dest) == sha256:
                logger.info("  缓存命中: %s", dest)
                return dest
            logger.warning("缓存文件校验和不匹配，重新下载: %s", dest)
            dest.unlink()

        try:
            validate_url_scheme(url, context=f"download {filename}")
        except ValidationError as e:
            raise DownloadError(url, str(e)) from e

        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        logger.info("  下载: %s", url)
        try:
            urllib.request.urlretrieve(url, str(part))  # nosec B310
        except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
            part.unlink(missing_ok=True)
            raise DownloadError(url, str(e)) from e

        if sha256:
            actual = file_sha256(part)
            if actual != sha256:
                part.unlink(missing_ok=True)
                raise ChecksumMismatchError(str(dest), sha256, actual)
            logger.info("  校验和通过: %s", filename)

        os.replace(part, dest)
        logger.info("  已保存: %s", dest)
        return dest
