# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Test Fixtures
# ════════════════════════════════════════════════════════════════════════════════

from typing import Callable, List

import pytest
import torch
import torch.nn as nn


class SimpleModel(nn.Module):
    """Minimal model for testing."""
    def __init__(self, in_dim=8, hidden=16, out_dim=4):
        super().__init__()
        self.fc1 = nn.Linear(in_dim, hidden)
        self.fc2 = nn.Linear(hidden, out_dim)

    def forward(self, x):
        return self.fc2(torch.relu(self.fc1(x)))


@pytest.fixture(autouse=True)
def _seed():
    torch.manual_seed(0)


@pytest.fixture
def make_param() -> Callable[..., torch.Tensor]:
    """Factory for leaf parameters."""
    def _make(*shape, dtype=torch.float32):
        shape = shape or (3,)
        return torch.randn(*shape, dtype=dtype).requires_grad_()
    return _make


@pytest.fixture
def params(make_param) -> List[torch.Tensor]:
    return [make_param(3), make_param(2, 2), make_param(4)]


@pytest.fixture
def model() -> SimpleModel:
    return SimpleModel()
