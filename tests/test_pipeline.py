"""
Tests for the pipeline script.
"""

import importlib.util
import logging
from pathlib import Path

import matplotlib.pyplot as plt
import pytest
import yaml

from gridsubset.kpoints import KpointsConfig, run_kpoints

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "run_kpoints.py"


@pytest.fixture
def pipeline_cls():
    loader_spec = importlib.util.spec_from_file_location("run_kpoints", SCRIPT)
    module = importlib.util.module_from_spec(loader_spec)
    loader_spec.loader.exec_module(module)
    return module.KpointsPipeline


@pytest.fixture
def pipeline(tmp_path, pipeline_cls):
    config = {
        "data": {"rasters": None, "target_table": None, "template_raster": None},
        "kpoints": {"criteria": [1.0], "klist": [2], "n_starts": 10, "min_area": 0.0,
                    "iter": 10, "verify_stop": True, "seed": 5},
        "output": {"base_dir": str(tmp_path / "outputs")},
        "logging": {"log_dir": str(tmp_path / "logs")},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config))

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield pipeline_cls(config_path)
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_create_figures_closes_every_figure(pipeline, four_cells, km_template):
    config = KpointsConfig(criteria=[1.0], klist=2, n_starts=10, min_area=0.0,
                           max_iter=10, seed=5, verify_stop=True)
    results = [run_kpoints(four_cells, config, km_template, k=k) for k in (1, 2, 3)]
    plt.close("all")

    pipeline.create_figures(four_cells, results)

    fig_dir = pipeline.output_dir / "figures"
    assert (fig_dir / "coverage_by_k.png").exists()
    assert (fig_dir / "subset_map_k3.png").exists()
    assert (fig_dir / "stopping_trace_k2.png").exists()
    assert plt.get_fignums() == []
