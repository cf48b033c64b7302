import pytest

from wt.utils.validate import Observation


@pytest.fixture
def make_obs():
    def _make(ap_id: str, value: float, **kwargs) -> Observation:
        return Observation.normalize(id=ap_id, value=value, **kwargs)
    return _make
