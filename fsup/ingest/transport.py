from __future__ import annotations

import tempfile
from typing import BinaryIO, Optional

from starlette.datastructures import FormData
from starlette.requests import ClientDisconnect, Request

from fsup.core.errors import UploadTooLarge

SPOOL_MAX_MEMORY = 8 * 1024 * 1024


class RequestBody:
    """Tracks the inbound request body so unread bytes can be drained after the handler runs."""

    def __init__(self, request: Request):
        self.request = request
        self._consumed = False
        self._spool: Optional[BinaryIO] = None
        self._form: Optional[FormData] = None
        self.bytes_read = 0

    @property
    def consumed(self) -> bool:
        return self._consumed

    async def spool(self, max_bytes: Optional[int] = None) -> BinaryIO:
        """Copy the body into a rewound temporary file, spilling to disk past ``SPOOL_MAX_MEMORY``.

        Raises:
            UploadTooLarge: More than ``max_bytes`` arrived. The rest of the body is read and
                discarded before raising.
        """
        spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
        self._spool = spool
        self._consumed = True
        overflow = False
        async for chunk in self.request.stream():
            self.bytes_read += len(chunk)
            if overflow or (max_bytes is not None and self.bytes_read > max_bytes):
                overflow = True
                continue
            spool.write(chunk)
        if overflow:
            raise UploadTooLarge(f"body exceeds {max_bytes} bytes")
        spool.seek(0)
        return spool

    async def form(self) -> FormData:
        self._consumed = True
        self._form = await self.request.form()
        return self._form

    async def drain(self) -> int:
        """Discard whatever the handler left unread and release buffers; returns discarded bytes."""
        discarded = 0
        if not self._consumed:
            self._consumed = True
            try:
                async for chunk in self.request.stream():
                    discarded += len(chunk)
            except ClientDisconnect:
                # client already gone, nothing left to drain
                pass
        if self._spool is not None:
            self._spool.close()
            self._spool = None
        if self._form is not None:
            await self._form.close()
            self._form = None
        return discarded


__all__ = ["RequestBody", "SPOOL_MAX_MEMORY"]
