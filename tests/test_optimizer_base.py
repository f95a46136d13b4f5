# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - OptimizerBase Tests
# ════════════════════════════════════════════════════════════════════════════════
# Group registration, option snapshots, membership, state map, zero_grad.
# ════════════════════════════════════════════════════════════════════════════════

import pytest
import torch

from tensor_optim import (
    DuplicateMembershipError,
    InvalidParameterError,
    LineSearchSGD,
    LossClosureOptimizer,
    Optimizer,
    OptimizerBase,
    OptimizerOptions,
    ParamGroup,
    SGD,
)


def non_leaf(make_param):
    return make_param(3) * 2


# ═════════════════════════════════════════════════════════════════════════════════
# Construction
# ═════════════════════════════════════════════════════════════════════════════════

def test_construct_from_flat_params_builds_single_legacy_group(params):
    opt = OptimizerBase(params)

    assert opt.size() == 3
    assert len(opt) == 3
    assert len(opt.param_groups) == 1
    assert opt.parameters() is opt.param_groups[0].params
    assert all(p is q for p, q in zip(opt.parameters(), params))


def test_construct_from_module_parameters(model):
    opt = OptimizerBase(model.parameters())
    assert opt.size() == len(list(model.parameters()))


def test_construct_rejects_non_leaf(make_param):
    with pytest.raises(InvalidParameterError) as exc_info:
        OptimizerBase([make_param(3), non_leaf(make_param)])
    assert exc_info.value.param_index == 1
    assert "non-leaf" in str(exc_info.value)


def test_construct_rejects_non_tensor(make_param):
    with pytest.raises(InvalidParameterError):
        OptimizerBase([make_param(3), 1.0])


def test_construct_rejects_mixed_groups_and_params(make_param):
    with pytest.raises(InvalidParameterError):
        OptimizerBase([make_param(3), {"params": [make_param(3)]}])


def test_construct_rejects_sets(make_param):
    with pytest.raises(TypeError):
        OptimizerBase({make_param(3)})


def test_construct_from_groups_has_no_legacy_list(make_param):
    opt = OptimizerBase(
        [ParamGroup([make_param(3)]), {"params": [make_param(2)], "lr": 0.5}],
        OptimizerOptions(lr=0.1),
    )

    assert len(opt.param_groups) == 2
    assert opt.size() == 0
    assert opt.parameters() == ()
    assert opt.param_groups[0].options.lr == 0.1
    assert opt.param_groups[1].options.lr == 0.5


def test_groups_only_optimizer_has_immutable_legacy_view(make_param):
    opt = OptimizerBase([ParamGroup([make_param(3)])])

    with pytest.raises(AttributeError):
        opt.parameters().append(make_param(2))

    assert opt.size() == 0
    assert len(list(opt.all_parameters())) == 1


def test_construct_from_empty_list():
    opt = OptimizerBase([])
    assert opt.size() == 0
    assert len(opt.param_groups) == 1


def test_step_contracts_are_abstract(params):
    with pytest.raises(TypeError):
        Optimizer(params)
    with pytest.raises(TypeError):
        LossClosureOptimizer(params)


def test_step_capabilities_are_distinct(params):
    assert isinstance(SGD(params), Optimizer)
    assert not isinstance(SGD(params), LossClosureOptimizer)

    closure_opt = LineSearchSGD([p.detach().clone().requires_grad_() for p in params])
    assert isinstance(closure_opt, LossClosureOptimizer)
    assert not isinstance(closure_opt, Optimizer)


# ═════════════════════════════════════════════════════════════════════════════════
# add_param_group
# ═════════════════════════════════════════════════════════════════════════════════

def test_group_without_options_snapshots_defaults(params, make_param):
    opt = OptimizerBase(params, OptimizerOptions(lr=0.1))
    group = opt.add_param_group(ParamGroup([make_param(3)]))

    assert group is opt.param_groups[1]
    assert group.options == opt.defaults
    assert group.options is not opt.defaults

    opt.defaults = OptimizerOptions(lr=0.5)

    assert opt.param_groups[1].options.lr == 0.1
    assert opt.param_groups[0].options.lr == 0.1
    later = opt.add_param_group(ParamGroup([make_param(3)]))
    assert later.options.lr == 0.5


def test_add_param_group_does_not_modify_callers_group(params, make_param):
    opt = OptimizerBase(params)
    group = ParamGroup([make_param(3)])
    opt.add_param_group(group)
    assert group.options is None


def test_add_param_group_accepts_single_tensor(params, make_param):
    opt = OptimizerBase(params)
    p = make_param(3)
    group = opt.add_param_group({"params": p})
    assert group.params[0] is p


def test_add_param_group_non_leaf_leaves_state_unchanged(params, make_param):
    opt = OptimizerBase(params)
    fresh = make_param(3)
    legacy = opt.param_groups[0]

    with pytest.raises(InvalidParameterError) as exc_info:
        opt.add_param_group(ParamGroup([fresh, non_leaf(make_param)]))

    assert exc_info.value.group_index == 1
    assert len(opt.param_groups) == 1
    assert opt.param_groups[0] is legacy
    assert opt.state.token_of(fresh) is None
    # The rejected parameter can still be registered later
    opt.add_param_group(ParamGroup([fresh]))
    assert opt.state.token_of(fresh) is not None


def test_add_param_group_rejects_parameter_in_another_group(params):
    opt = OptimizerBase(params)

    with pytest.raises(DuplicateMembershipError) as exc_info:
        opt.add_param_group(ParamGroup([params[1]]))

    assert exc_info.value.existing_group_index == 0
    assert len(opt.param_groups) == 1


def test_add_param_group_rejects_repeat_within_group(make_param):
    p = make_param(3)
    opt = OptimizerBase([make_param(3)])
    with pytest.raises(DuplicateMembershipError):
        opt.add_param_group(ParamGroup([p, p]))
    assert len(opt.param_groups) == 1


def test_construct_from_groups_is_all_or_nothing(make_param):
    shared = make_param(3)
    with pytest.raises(DuplicateMembershipError) as exc_info:
        OptimizerBase([ParamGroup([shared]), ParamGroup([make_param(2), shared])])
    assert exc_info.value.group_index == 1
    assert exc_info.value.existing_group_index == 0


# ═════════════════════════════════════════════════════════════════════════════════
# Legacy parameter list
# ═════════════════════════════════════════════════════════════════════════════════

def test_add_parameters_extends_legacy_group(params, make_param):
    opt = OptimizerBase(params)
    extra = make_param(5)

    with pytest.warns(DeprecationWarning):
        opt.add_parameters([extra])

    assert opt.size() == 4
    assert len(opt.param_groups) == 1
    assert opt.parameters()[-1] is extra
    assert opt.state.token_of(extra) is not None


def test_add_parameters_creates_legacy_group_when_built_from_groups(make_param):
    opt = OptimizerBase([ParamGroup([make_param(3)])])

    with pytest.warns(DeprecationWarning):
        opt.add_parameters(make_param(2))

    assert len(opt.param_groups) == 2
    assert opt.size() == 1
    assert opt.parameters() is opt.param_groups[1].params


def test_add_parameters_validates(params, make_param):
    opt = OptimizerBase(params)
    with pytest.warns(DeprecationWarning):
        with pytest.raises(InvalidParameterError):
            opt.add_parameters([make_param(3), non_leaf(make_param)])
    with pytest.warns(DeprecationWarning):
        with pytest.raises(DuplicateMembershipError):
            opt.add_parameters([params[0]])
    assert opt.size() == 3


def test_size_counts_legacy_list_only(params, make_param):
    opt = OptimizerBase(params)
    opt.add_param_group(ParamGroup([make_param(3), make_param(3)]))
    assert opt.size() == 3
    assert len(list(opt.all_parameters())) == 5


# ═════════════════════════════════════════════════════════════════════════════════
# State map
# ═════════════════════════════════════════════════════════════════════════════════

def test_state_is_keyed_by_identity_not_value(make_param):
    a = make_param(3)
    b = a.detach().clone().requires_grad_()
    opt = OptimizerBase([a, b])

    opt.state[a] = {"count": 1}

    assert a in opt.state
    assert b not in opt.state
    assert opt.state.get(b) is None
    assert opt.state.token_of(a) != opt.state.token_of(b)
    assert [p is a for p in opt.state] == [True]


def test_state_starts_empty_and_survives_growth(params, make_param):
    opt = OptimizerBase(params)
    assert len(opt.state) == 0

    opt.state[params[0]] = {"momentum": torch.ones(3)}
    token = opt.state.token_of(params[0])

    opt.add_param_group(ParamGroup([make_param(2)]))
    with pytest.warns(DeprecationWarning):
        opt.add_parameters([make_param(2)])

    assert len(opt.state) == 1
    assert opt.state.token_of(params[0]) == token
    assert torch.equal(opt.state[params[0]]["momentum"], torch.ones(3))


def test_state_setdefault_and_items(params):
    opt = OptimizerBase(params)
    record = opt.state.setdefault(params[1], {"step": 0})
    record["step"] += 1

    items = list(opt.state.items())
    assert len(items) == 1
    assert items[0][0] is params[1]
    assert items[0][1] == {"step": 1}

    del opt.state[params[1]]
    assert params[1] not in opt.state
    with pytest.raises(KeyError):
        opt.state[params[1]]


# ═════════════════════════════════════════════════════════════════════════════════
# zero_grad
# ═════════════════════════════════════════════════════════════════════════════════

def test_zero_grad_end_to_end(make_param):
    p1, p2, p3 = make_param(3), make_param(3), make_param(3)
    opt = OptimizerBase([p1, p2, p3], OptimizerOptions())
    assert opt.size() == 3

    p4 = make_param(2)
    group = opt.add_param_group(ParamGroup([p4]))
    assert group.options == opt.defaults

    p1.grad = torch.full((3,), 2.0)
    p4.grad = torch.full((2,), -1.5)

    opt.zero_grad()

    assert torch.equal(p1.grad, torch.zeros(3))
    assert torch.equal(p4.grad, torch.zeros(2))
    assert p2.grad is None
    assert p3.grad is None


def test_zero_grad_is_idempotent(params):
    opt = OptimizerBase(params)
    params[0].grad = torch.ones(3)
    grad = params[0].grad

    opt.zero_grad()
    opt.zero_grad()

    assert params[0].grad is grad
    assert torch.equal(params[0].grad, torch.zeros(3))
    assert params[1].grad is None
    assert params[2].grad is None


def test_zero_grad_after_backward(model):
    opt = OptimizerBase(model.parameters())
    model(torch.randn(4, 8)).sum().backward()

    opt.zero_grad()

    for p in model.parameters():
        assert p.grad is not None
        assert not p.grad.any()


def test_zero_grad_detaches_graph_carrying_gradient(make_param):
    p = make_param(3)
    (p ** 3).sum().backward(create_graph=True)
    assert p.grad.grad_fn is not None

    OptimizerBase([p]).zero_grad()

    assert p.grad.grad_fn is None
    assert not p.grad.requires_grad
    assert torch.equal(p.grad, torch.zeros(3))


def test_zero_grad_visits_appended_duplicates_once(params):
    opt = OptimizerBase(params)
    # Appending straight to the legacy list bypasses membership checks
    opt.parameters().append(params[0])
    params[0].grad = torch.ones(3)

    opt.zero_grad()

    assert torch.equal(params[0].grad, torch.zeros(3))


def test_zero_grad_set_to_none(params):
    opt = OptimizerBase(params)
    params[0].grad = torch.ones(3)
    opt.zero_grad(set_to_none=True)
    assert params[0].grad is None
