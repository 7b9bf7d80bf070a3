"""
On-disk memo store for fitted models.

One FitCache handle is opened per report build and passed explicitly to
the fitting functions. Entries are joblib files named by a SHA-256 key that
combines the model specification, backend settings and a fingerprint of the
data the model was fitted on, so a silent data change never reuses a stale
fit. There is no eviction; deleting the directory forces a full refit.

Usage:
    with FitCache(FIT_CACHE_DIR) as cache:
        fit = fit_model(spec, features, cache=cache)
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import joblib
import pandas as pd


def data_fingerprint(frame: pd.DataFrame) -> str:
    """Content hash of a DataFrame (values, column names, column order)."""
    row_hashes = pd.util.hash_pandas_object(frame, index=False).to_numpy()
    digest = hashlib.sha256(row_hashes.tobytes())
    digest.update("|".join(map(str, frame.columns)).encode("utf-8"))
    return digest.hexdigest()


def make_cache_key(*parts: Any) -> str:
    """Join the parts into one string and hash it."""
    text = "||".join(str(part) for part in parts)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class FitCache:
    """
    Key-value store of fit results under one directory.

    Reads are safe while another process writes a different key: every
    entry is written to a temporary file first and moved into place with
    os.replace.
    """

    suffix = ".joblib"

    def __init__(self, directory: Union[str, Path], verbose: bool = False):
        self.directory = Path(directory)
        self.verbose = verbose
        self.hits = 0
        self.misses = 0

    def __enter__(self) -> "FitCache":
        self.directory.mkdir(parents=True, exist_ok=True)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.verbose:
            print(f"[INFO] Fit cache: {self.hits} hit(s), {self.misses} miss(es) in {self.directory}")

    def __repr__(self) -> str:
        return f"FitCache({str(self.directory)!r})"

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}{self.suffix}"

    def __contains__(self, key: str) -> bool:
        return self._path(key).exists()

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        path = self._path(key)
        if not path.exists():
            self.misses += 1
            return default
        self.hits += 1
        return joblib.load(path)

    def put(self, key: str, value: Any) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=self.suffix)
        os.close(fd)
        try:
            joblib.dump(value, tmp_name)
            os.replace(tmp_name, path)
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
        return path

    def keys(self) -> Iterable[str]:
        if not self.directory.exists():
            return []
        return sorted(p.name[: -len(self.suffix)] for p in self.directory.glob(f"*{self.suffix}")
                      if not p.name.startswith(".tmp-"))

    def __len__(self) -> int:
        return len(list(self.keys()))

    def clear(self) -> int:
        """Delete every entry; returns the number removed."""
        removed = 0
        for key in list(self.keys()):
            self._path(key).unlink(missing_ok=True)
            removed += 1
        return removed
