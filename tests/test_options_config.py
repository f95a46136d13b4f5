# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Options, Config and Factory Tests
# ════════════════════════════════════════════════════════════════════════════════

import pytest
from pydantic import ValidationError

from tensor_optim import (
    SGD,
    Adam,
    AdamOptions,
    ConfigurationError,
    InvalidParameterError,
    LineSearchSGD,
    OptimError,
    OptimizationError,
    OptimizerBase,
    OptimizerConfig,
    OptimizerOptions,
    OptimizerType,
    ParamGroup,
    SchemaValidationError,
    SGDOptions,
    YAMLParseError,
    create_optimizer,
    load_optimizer_config,
    load_optimizer_config_from_dict,
)
from tensor_optim.core.config import interpolate_env_vars


# ═════════════════════════════════════════════════════════════════════════════════
# Option records
# ═════════════════════════════════════════════════════════════════════════════════

def test_explicitly_set_fields_are_tracked():
    options = SGDOptions(lr=0.1, momentum=0.9)

    assert options.is_set("lr")
    assert options.is_set("momentum")
    assert not options.is_set("nesterov")
    assert options.explicit() == {"lr": 0.1, "momentum": 0.9}


def test_merged_over_keeps_explicit_fields():
    defaults = SGDOptions(lr=0.1, momentum=0.9, weight_decay=0.01)
    merged = SGDOptions(lr=0.5).merged_over(defaults)

    assert merged.lr == 0.5
    assert merged.momentum == 0.9
    assert merged.weight_decay == 0.01
    assert merged.is_set("lr")


def test_explicit_default_value_still_overrides():
    defaults = SGDOptions(lr=0.1, momentum=0.9)
    merged = SGDOptions(momentum=0.0).merged_over(defaults)
    assert merged.momentum == 0.0


def test_options_are_frozen():
    options = OptimizerOptions(lr=0.1)
    with pytest.raises(ValidationError):
        options.lr = 0.5


def test_snapshot_is_equal_but_independent():
    options = SGDOptions(lr=0.2)
    copy = options.snapshot()
    assert copy == options
    assert copy is not options
    assert copy.explicit() == {"lr": 0.2}


def test_base_defaults_are_promoted_to_optimizer_options(make_param):
    opt = SGD([make_param(3)])
    opt.defaults = OptimizerOptions(lr=0.3)

    assert isinstance(opt.defaults, SGDOptions)
    assert opt.defaults.lr == 0.3


# ═════════════════════════════════════════════════════════════════════════════════
# Group mappings
# ═════════════════════════════════════════════════════════════════════════════════

def test_group_mapping_without_overrides_has_no_options(make_param):
    group = ParamGroup.from_dict({"params": [make_param(3)]}, SGDOptions)
    assert not group.has_options()
    assert len(group) == 1


def test_group_mapping_requires_params():
    with pytest.raises(ConfigurationError) as exc_info:
        ParamGroup.from_dict({"lr": 0.1})
    assert exc_info.value.field_path == "params"


def test_group_mapping_rejects_unknown_fields(make_param):
    with pytest.raises(ConfigurationError) as exc_info:
        SGD([{"params": [make_param(3)], "betas": (0.9, 0.99)}])
    assert exc_info.value.field_path == "betas"


def test_group_mapping_validated_after_merge(make_param):
    opt = SGD([make_param(3)], lr=0.1)
    with pytest.raises(ConfigurationError):
        opt.add_param_group({"params": [make_param(3)], "lr": -1.0})
    # momentum defaults to 0, so nesterov cannot be enabled for this group
    with pytest.raises(ConfigurationError):
        opt.add_param_group({"params": [make_param(3)], "nesterov": True})
    assert len(opt.param_groups) == 1


def test_group_options_of_another_optimizer_rejected(make_param):
    opt = SGD([make_param(3)], lr=0.1, momentum=0.9)

    with pytest.raises(ConfigurationError) as exc_info:
        opt.add_param_group(ParamGroup([make_param(3)], AdamOptions(lr=0.01)))

    assert exc_info.value.expected == "SGDOptions"
    assert exc_info.value.got == "AdamOptions"
    assert len(opt.param_groups) == 1


def test_defaults_of_another_optimizer_rejected(make_param):
    opt = SGD([make_param(3)], lr=0.1)

    with pytest.raises(ConfigurationError):
        opt.defaults = AdamOptions(lr=0.2)
    with pytest.raises(ConfigurationError):
        Adam([make_param(3)]).defaults = SGDOptions(lr=0.2)

    assert isinstance(opt.defaults, SGDOptions)
    assert opt.defaults.lr == 0.1


def test_group_rejects_non_group_items(make_param):
    opt = OptimizerBase([make_param(3)])
    with pytest.raises(InvalidParameterError):
        opt.add_param_group([make_param(3)])


# ═════════════════════════════════════════════════════════════════════════════════
# YAML configuration
# ═════════════════════════════════════════════════════════════════════════════════

def write_yaml(tmp_path, text, name="optim.yaml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_section(tmp_path):
    path = write_yaml(tmp_path, (
        "model:\n"
        "  hidden: 16\n"
        "optimizer:\n"
        "  optimizer_type: sgd\n"
        "  lr: 0.05\n"
        "  momentum: 0.9\n"
        "  nesterov: true\n"
    ))

    config = load_optimizer_config(path)
    options = config.to_options()

    assert config.optimizer_type is OptimizerType.SGD
    assert isinstance(options, SGDOptions)
    assert options.explicit() == {"lr": 0.05, "momentum": 0.9, "nesterov": True}


def test_load_config_whole_file(tmp_path):
    path = write_yaml(tmp_path, "optimizer_type: adam\nbetas: [0.8, 0.99]\n")
    options = load_optimizer_config(path).to_options()
    assert options.betas == (0.8, 0.99)
    assert not options.is_set("lr")


def test_env_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("OPTIM_TEST_LR", "0.25")
    monkeypatch.delenv("OPTIM_TEST_MOMENTUM", raising=False)
    path = write_yaml(tmp_path, (
        "optimizer:\n"
        "  lr: ${OPTIM_TEST_LR}\n"
        "  momentum: ${OPTIM_TEST_MOMENTUM:-0.5}\n"
    ))

    options = load_optimizer_config(path).to_options()

    assert options.lr == 0.25
    assert options.momentum == 0.5


def test_interpolate_env_vars_recurses(monkeypatch):
    monkeypatch.setenv("OPTIM_TEST_NAME", "adam")
    value = {"a": ["${OPTIM_TEST_NAME}", 1], "b": "x-${OPTIM_TEST_MISSING:-y}"}
    assert interpolate_env_vars(value) == {"a": ["adam", 1], "b": "x-y"}


def test_bad_yaml_reports_location(tmp_path):
    path = write_yaml(tmp_path, "optimizer:\n  lr: [0.1\n  momentum: 0.9\n")

    with pytest.raises(YAMLParseError) as exc_info:
        load_optimizer_config(path)

    assert exc_info.value.line is not None
    assert str(path) in str(exc_info.value)


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        load_optimizer_config(tmp_path / "absent.yaml")
    assert "not found" in exc_info.value.message


def test_empty_config_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_optimizer_config(write_yaml(tmp_path, ""))


def test_non_mapping_config_root(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        load_optimizer_config(write_yaml(tmp_path, "- sgd\n- adam\n"))
    assert exc_info.value.got == "list"


def test_unknown_config_field(tmp_path):
    path = write_yaml(tmp_path, "optimizer:\n  lr: 0.1\n  warmup: 10\n")
    with pytest.raises(SchemaValidationError) as exc_info:
        load_optimizer_config(path)
    assert any("warmup" in err for err in exc_info.value.validation_errors)


def test_field_not_supported_by_optimizer():
    config = load_optimizer_config_from_dict({"optimizer_type": "adam", "momentum": 0.9})
    with pytest.raises(ConfigurationError) as exc_info:
        config.to_options()
    assert type(exc_info.value) is ConfigurationError
    assert exc_info.value.field_path == "momentum"


def test_out_of_range_value():
    config = load_optimizer_config_from_dict({"lr": -0.1})
    with pytest.raises(SchemaValidationError) as exc_info:
        config.to_options()
    assert exc_info.value.validation_errors


# ═════════════════════════════════════════════════════════════════════════════════
# Factory
# ═════════════════════════════════════════════════════════════════════════════════

def test_create_optimizer_from_config(make_param):
    config = OptimizerConfig(optimizer_type="adam", lr=0.01, amsgrad=True)
    opt = create_optimizer(config, [make_param(3)], weight_decay=0.1)

    assert isinstance(opt, Adam)
    assert opt.defaults.lr == 0.01
    assert opt.defaults.amsgrad
    assert opt.defaults.weight_decay == 0.1


def test_create_optimizer_by_name(make_param):
    assert isinstance(create_optimizer("SGD", [make_param(3)], lr=0.1), SGD)
    assert isinstance(create_optimizer("Line-Search", [make_param(3)]), LineSearchSGD)
    assert isinstance(create_optimizer(OptimizerType.ADAM, [make_param(3)]), Adam)


def test_create_optimizer_unknown_name(make_param):
    with pytest.raises(OptimizationError) as exc_info:
        create_optimizer("lbfgs", [make_param(3)])
    assert "Available" in str(exc_info.value)


# ═════════════════════════════════════════════════════════════════════════════════
# Error formatting
# ═════════════════════════════════════════════════════════════════════════════════

def test_error_str_includes_context_and_cause():
    cause = ValueError("bad value")
    error = OptimError(message="failed", cause=cause, remediation="try again")
    error.with_context(step=3)

    text = str(error)
    assert "OptimError: failed" in text
    assert "step=3" in text
    assert "Remediation: try again" in text
    assert "ValueError: bad value" in text
    assert error.__cause__ is cause


def test_parameter_error_str_includes_location():
    error = InvalidParameterError(message="can't optimize", param_index=2, group_index=1)
    assert str(error).startswith("InvalidParameterError [group 1, param 2]: can't optimize")
