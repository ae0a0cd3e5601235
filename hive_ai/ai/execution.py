"""Execution sessions for the scoring network and the session pool.

A session is one live replica of the network on a device, able to run
inference (``run``) and training steps. Sessions are fungible: inference
runs without a per-session lock, so several batches may execute on the
same session concurrently. The pool hands sessions out round-robin.
"""

from __future__ import annotations

import contextlib
import logging
import os
import threading
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np
import torch

from ..errors import ConfigurationError, ModelArtifactError
from ..metrics import SESSION_POOL_SIZE
from .hive_net import ACTIONS_BOARD_INDICES, ACTIONS_PREDICTIONS, OUTPUT_NAMES, GraphDefinition, HiveScoringNet

logger = logging.getLogger(__name__)


def _is_truthy_env(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


def select_device(force_cpu: bool = False) -> torch.device:
    """CUDA when available unless CPU is forced (flag or HIVE_FORCE_CPU)."""
    if force_cpu or _is_truthy_env("HIVE_FORCE_CPU"):
        return torch.device("cpu")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


class ExecutionSession:
    """One replica of the scoring network on a device."""

    def __init__(self, graph: GraphDefinition, device: torch.device, index: int = 0):
        self.graph = graph
        self.device = device
        self.index = index
        self.model = HiveScoringNet(graph).to(device)
        self.model.eval()

    def _to_tensors(self, feeds: Dict[str, np.ndarray]) -> Dict[str, torch.Tensor]:
        tensors = {}
        for name, value in feeds.items():
            if name == ACTIONS_BOARD_INDICES:
                tensors[name] = torch.as_tensor(value, dtype=torch.int64, device=self.device)
            else:
                tensors[name] = torch.as_tensor(value, dtype=torch.float32, device=self.device)
        return tensors

    def run(self, feeds: Dict[str, np.ndarray], fetches: Sequence[str]) -> List[np.ndarray]:
        """Evaluate the network and return the requested outputs, in order."""
        for name in fetches:
            if name not in OUTPUT_NAMES:
                raise ModelArtifactError(f"Graph has no output named {name!r}")
        with torch.no_grad():
            outputs = self.model(
                self._to_tensors(feeds), with_actions=ACTIONS_PREDICTIONS in fetches
            )
        return [outputs[name].detach().cpu().numpy() for name in fetches]

    def initialize(self) -> None:
        self.model.reset_parameters()

    def restore(self, state_dict: Dict[str, torch.Tensor]) -> None:
        self.model.load_state_dict(state_dict)

    def state_dict(self) -> Dict[str, torch.Tensor]:
        return {k: v.detach().cpu() for k, v in self.model.state_dict().items()}

    def train(
        self,
        feeds: Dict[str, np.ndarray],
        board_labels: np.ndarray,
        action_labels: np.ndarray,
        learning_rate: float,
        steps: int,
    ) -> float:
        """Run ``steps`` gradient-descent steps; return the loss afterwards."""
        inputs = self._to_tensors(feeds)
        board_t = torch.as_tensor(board_labels, dtype=torch.float32, device=self.device)
        action_t = torch.as_tensor(action_labels, dtype=torch.float32, device=self.device)
        optimizer = torch.optim.SGD(self.model.parameters(), lr=learning_rate)
        for _ in range(steps):
            optimizer.zero_grad()
            loss = self.model.losses(inputs, board_t, action_t)
            loss.backward()
            optimizer.step()
        with torch.no_grad():
            return float(self.model.losses(inputs, board_t, action_t).item())

    def close(self) -> None:
        self.model = self.model.cpu()


class SessionPool:
    """Fixed set of sessions handed out round-robin.

    Membership never changes after creation; only the turn counter is
    guarded by the lock.
    """

    def __init__(self, sessions: Sequence[ExecutionSession]):
        if not sessions:
            raise ConfigurationError("Session pool needs at least one session")
        self._sessions = tuple(sessions)
        self._turn = 0
        self._lock = threading.Lock()

    def next_session(self) -> ExecutionSession:
        with self._lock:
            session = self._sessions[self._turn]
            self._turn = (self._turn + 1) % len(self._sessions)
        return session

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[ExecutionSession]:
        return iter(self._sessions)

    def __getitem__(self, index: int) -> ExecutionSession:
        return self._sessions[index]

    def close(self) -> None:
        for session in self._sessions:
            session.close()
        if torch.cuda.is_available():
            with contextlib.suppress(Exception):
                torch.cuda.empty_cache()


def create_session_pool(
    graph: GraphDefinition,
    size: int = 1,
    force_cpu: bool = False,
    device: Optional[torch.device] = None,
) -> SessionPool:
    if size < 1:
        raise ConfigurationError(f"Invalid session pool size {size}, it must be > 0")
    if device is None:
        device = select_device(force_cpu)
    sessions = [ExecutionSession(graph, device, index=ii) for ii in range(size)]
    logger.info(f"Created {size} execution session(s) for '{graph.name}' on {device}")
    SESSION_POOL_SIZE.set(size)
    return SessionPool(sessions)
