"""
Off-thread decode service

Request/response over a thread pool: a DecodeRequest carries the raw file
bytes, a DecodeResponse carries either the dataset or the error. Decode
errors never escape the worker as exceptions, the caller inspects the
response. There is no progress channel across this boundary.
"""

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional
import logging
import time

from ..config import WORKER
from ..core.bounds import PointCloudDataset
from ..core.pcd_decoder import DecoderConfig, PCDDecoder
from ..errors import DecodeError

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


def next_request_id() -> int:
    return next(_request_ids)


@dataclass
class DecodeRequest:
    data: bytes
    config: Optional[DecoderConfig] = None
    request_id: int = field(default_factory=next_request_id)


@dataclass
class DecodeResponse:
    request_id: int
    dataset: Optional[PointCloudDataset] = None
    error: Optional[Exception] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> PointCloudDataset:
        """Return the dataset or re-raise the decode error"""
        if self.error is not None:
            raise self.error
        return self.dataset


def handle_request(request: DecodeRequest) -> DecodeResponse:
    """Worker body: decode one request, capture any failure in the response"""
    start = time.perf_counter()
    try:
        dataset = PCDDecoder(request.config).decode(request.data)
        return DecodeResponse(request.request_id, dataset=dataset,
                              elapsed=time.perf_counter() - start)
    except DecodeError as e:
        logger.warning(f"Decode request {request.request_id} failed: {e.reason}")
        return DecodeResponse(request.request_id, error=e, elapsed=time.perf_counter() - start)
    except Exception as e:
        logger.error(f"Decode request {request.request_id} crashed: {e}")
        return DecodeResponse(request.request_id, error=e, elapsed=time.perf_counter() - start)


class DecodeService:
    """
    Thread pool running decode requests

    Each request is independent; several loads can decode in parallel.

    Usage:
        with DecodeService() as service:
            future = service.submit(DecodeRequest(data))
            response = future.result()
    """

    def __init__(self, max_workers: int = WORKER.MAX_WORKERS):
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                             thread_name_prefix="pcd-decode")
        self._lock = threading.Lock()
        self._in_flight = 0

    def submit(self, request: DecodeRequest) -> 'Future[DecodeResponse]':
        with self._lock:
            self._in_flight += 1
        logger.debug(f"Decode request {request.request_id}: {len(request.data):,} bytes")
        future = self._executor.submit(handle_request, request)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, _future):
        with self._lock:
            self._in_flight -= 1

    def decode(self, data: bytes, config: Optional[DecoderConfig] = None) -> DecodeResponse:
        """Blocking convenience wrapper"""
        return self.submit(DecodeRequest(data, config)).result()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
