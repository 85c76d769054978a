import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from aimd.config import config_from_dict
from aimd.quantum.stub_engine import render_output

WATER_NUMBERS = (8, 1, 1)
WATER_POSITIONS = np.array([[0.000000, 0.000000, 0.117300],
                            [0.000000, 0.757200, -0.469200],
                            [0.000000, -0.757200, -0.469200]])


@pytest.fixture
def gaussian_settings():
    return {
        "mem": "4GB",
        "cpu": "0-3",
        "checkpoint": "water.chk",
        "key_words": "b3lyp/6-31g(d) force nosymm",
        "title": "water aimd",
        "charge": 0,
        "multiplicity": 1,
    }


@pytest.fixture
def make_config(gaussian_settings, tmp_path):
    def _make(**overrides):
        overrides.setdefault("work_dir", str(tmp_path))
        return config_from_dict(gaussian_settings, **overrides)
    return _make


@pytest.fixture
def config(make_config):
    return make_config(time_step=0.5, num_steps=4)


@pytest.fixture
def seed_file(tmp_path):
    path = tmp_path / "seed.log"
    path.write_text(render_output(WATER_NUMBERS, WATER_POSITIONS, energy=-76.4089))
    return path


@pytest.fixture
def config_file(gaussian_settings, tmp_path):
    import yaml
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(gaussian_settings))
    return path
