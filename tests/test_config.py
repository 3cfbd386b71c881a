import pytest
import yaml
from pydantic import ValidationError

from climsdm.config import DEFAULT_CONFIG_PATH, ModelConfig, PipelineConfig, load_config


def test_default_config_loads():
    config = load_config()

    assert config.occurrence.scientific_name == "Protea cynaroides"
    assert config.grid.crs == "EPSG:6933"
    assert config.climate.bands == ["bio1", "bio2", "bio5", "bio6", "bio12", "bio14", "bio15"]
    assert len(config.climate.periods) == 2
    assert config.model.n_folds == 5
    assert config.model.seed == 42


def test_overrides_merge_sections(tmp_path):
    config = load_config(DEFAULT_CONFIG_PATH, overrides={"model": {"seed": 7}, "output_dir": tmp_path})

    assert config.model.seed == 7
    assert config.model.n_folds == 5
    assert config.output_dir == tmp_path


def test_minimal_config(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "occurrence": {"genus": "Leucadendron", "species": "argenteum"},
                "grid": {"bbox": [18.0, -34.5, 19.5, -33.5], "country": "ZAF"},
            }
        )
    )
    config = load_config(path)

    assert config.climate.ssp == "585"
    assert config.occurrence.year_range == (1970, 2000)


@pytest.mark.parametrize(
    "section,values",
    [
        ("grid", {"bbox": [20.0, -30.0, 10.0, -20.0], "country": "ZAF"}),
        ("climate", {"bands": ["bio1", "bio20"]}),
        ("climate", {"bands": ["bio1", "bio1"]}),
        ("occurrence", {"genus": "Protea", "species": "cynaroides", "year_range": [2000, 1970]}),
    ],
)
def test_invalid_config(section, values):
    raw = {
        "occurrence": {"genus": "Protea", "species": "cynaroides"},
        "grid": {"bbox": [16.3, -35.0, 33.0, -22.1], "country": "ZAF"},
    }
    raw[section] = values
    with pytest.raises(ValidationError):
        PipelineConfig.model_validate(raw)


def test_eval_fold_within_folds():
    with pytest.raises(ValidationError):
        ModelConfig(n_folds=3, eval_fold=4)
