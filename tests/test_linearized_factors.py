from typing import List, Tuple

import jax
import jaxlie
import numpy as onp
import pytest
from loguru import logger

import jaxlin


def _make_problem(
    noise_model: jaxlin.noises.NoiseModelBase,
) -> Tuple[
    List[jaxlin.core.VariableBase],
    jaxlin.core.Ordering,
    jaxlin.core.VariableAssignments,
    jaxlin.linear.JacobianFactor,
]:
    """Linear factor over a vector variable and an SE(2) pose."""
    rng = onp.random.default_rng(0)
    variables: List[jaxlin.core.VariableBase] = [
        jaxlin.core.RealVectorVariable[2](),
        jaxlin.geometry.SE2Variable(),
    ]
    ordering = jaxlin.core.Ordering.make(variables)
    lin_points = jaxlin.core.VariableAssignments.make_from_dict(
        {
            variables[0]: onp.array([1.0, -2.0]),
            variables[1]: jaxlie.SE2.from_xy_theta(0.5, 1.0, 0.2),
        }
    )
    jacobian_factor = jaxlin.linear.JacobianFactor.make(
        terms=[(0, rng.normal(size=(4, 2))), (1, rng.normal(size=(4, 3)))],
        b=rng.normal(size=(4,)),
        noise_model=noise_model,
    )
    return variables, ordering, lin_points, jacobian_factor


def _make_vector_problem() -> Tuple[
    List[jaxlin.core.VariableBase],
    jaxlin.core.Ordering,
    jaxlin.core.VariableAssignments,
    jaxlin.linear.JacobianFactor,
]:
    """Linear factor over two vector variables, where linearization is exact."""
    rng = onp.random.default_rng(1)
    variables: List[jaxlin.core.VariableBase] = [
        jaxlin.core.RealVectorVariable[2](),
        jaxlin.core.RealVectorVariable[3](),
    ]
    ordering = jaxlin.core.Ordering.make(variables)
    lin_points = jaxlin.core.VariableAssignments.make_from_dict(
        {variables[0]: rng.normal(size=(2,)), variables[1]: rng.normal(size=(3,))}
    )
    jacobian_factor = jaxlin.linear.JacobianFactor.make(
        terms=[(0, rng.normal(size=(4, 2))), (1, rng.normal(size=(4, 3)))],
        b=rng.normal(size=(4,)),
        noise_model=jaxlin.noises.DiagonalGaussian.make_from_sigmas(
            [0.5, 1.0, 2.0, 0.1]
        ),
    )
    return variables, ordering, lin_points, jacobian_factor


def _capture_both(
    ordering: jaxlin.core.Ordering,
    lin_points: jaxlin.core.VariableAssignments,
    jacobian_factor: jaxlin.linear.JacobianFactor,
) -> Tuple[
    jaxlin.linearized.LinearizedJacobianFactor,
    jaxlin.linearized.LinearizedHessianFactor,
]:
    return (
        jaxlin.linearized.LinearizedJacobianFactor.make(
            jacobian_factor, ordering, lin_points
        ),
        jaxlin.linearized.LinearizedHessianFactor.make(
            jaxlin.linear.HessianFactor.from_jacobian(jacobian_factor),
            ordering,
            lin_points,
        ),
    )


def _perturb(
    variables: List[jaxlin.core.VariableBase],
    assignments: jaxlin.core.VariableAssignments,
    seed: int,
    scale: float = 0.3,
):
    rng = onp.random.default_rng(seed)
    deltas = {
        v: scale * rng.normal(size=(v.get_local_parameter_dim(),)) for v in variables
    }
    return deltas, assignments.manifold_retract(deltas)


def test_jacobian_and_hessian_forms_agree() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.Gaussian.make_from_covariance(
            onp.diag([0.5, 1.0, 2.0, 0.25]) + 0.1
        )
    )
    jacobian_form, hessian_form = _capture_both(ordering, lin_points, jacobian_factor)

    for seed in range(3):
        deltas, values = _perturb(variables, lin_points, seed)
        expected = jacobian_factor.error({ordering[v]: d for v, d in deltas.items()})
        onp.testing.assert_allclose(jacobian_form.error(values), expected, rtol=1e-7)
        onp.testing.assert_allclose(hessian_form.error(values), expected, rtol=1e-7)


def test_error_at_linearization_point() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.IsotropicGaussian.make_from_sigma(4, 0.5)
    )
    jacobian_form, hessian_form = _capture_both(ordering, lin_points, jacobian_factor)

    # Zero displacement leaves only the constant term: 0.5 |b|^2, whitened.
    expected = 0.5 * onp.sum((onp.asarray(jacobian_factor.b) / 0.5) ** 2)
    onp.testing.assert_allclose(jacobian_form.error(lin_points), expected, rtol=1e-9)
    onp.testing.assert_allclose(hessian_form.error(lin_points), expected, rtol=1e-9)
    onp.testing.assert_allclose(
        hessian_form.constant_term(), 2.0 * expected, rtol=1e-9
    )


def test_prior_at_mean_has_zero_error() -> None:
    variable = jaxlin.geometry.SE2Variable()
    mean = jaxlie.SE2.from_xy_theta(1.0, 2.0, -0.4)
    ordering = jaxlin.core.Ordering.make([variable])
    lin_points = jaxlin.core.VariableAssignments.make_from_dict({variable: mean})

    prior = jaxlin.geometry.PriorFactor.make(
        variable=variable,
        mu=mean,
        noise_model=jaxlin.noises.DiagonalGaussian.make_from_sigmas([0.1, 0.1, 0.2]),
    )
    jacobian_factor = prior.linearize(lin_points, ordering)
    assert isinstance(jacobian_factor, jaxlin.linear.JacobianFactor)
    jacobian_form, hessian_form = _capture_both(ordering, lin_points, jacobian_factor)

    onp.testing.assert_allclose(jacobian_form.error(lin_points), 0.0, atol=1e-12)
    onp.testing.assert_allclose(hessian_form.error(lin_points), 0.0, atol=1e-12)

    # Away from the mean, both forms approximate the nonlinear prior.
    _, values = _perturb([variable], lin_points, seed=0, scale=1e-3)
    onp.testing.assert_allclose(
        jacobian_form.error(values), prior.error(values), rtol=1e-4
    )
    onp.testing.assert_allclose(
        hessian_form.error(values), prior.error(values), rtol=1e-4
    )


def test_captured_between_factor() -> None:
    variables = [jaxlin.geometry.SE2Variable(), jaxlin.geometry.SE2Variable()]
    ordering = jaxlin.core.Ordering.make(variables)
    lin_points = jaxlin.core.VariableAssignments.make_from_dict(
        {
            variables[0]: jaxlie.SE2.from_xy_theta(0.0, 0.0, 0.1),
            variables[1]: jaxlie.SE2.from_xy_theta(1.1, 0.1, 0.3),
        }
    )
    between = jaxlin.geometry.BetweenFactor.make(
        variables[0],
        variables[1],
        jaxlie.SE2.from_xy_theta(1.0, 0.0, 0.2),
        noise_model=jaxlin.noises.IsotropicGaussian.make_from_sigma(3, 0.1),
    )
    jacobian_factor = between.linearize(lin_points, ordering)
    assert isinstance(jacobian_factor, jaxlin.linear.JacobianFactor)
    assert jacobian_factor.indices == (0, 1)

    jacobian_form, hessian_form = _capture_both(ordering, lin_points, jacobian_factor)

    # At the linearization point, captured factors match the nonlinear cost exactly.
    onp.testing.assert_allclose(
        jacobian_form.error(lin_points), between.error(lin_points), rtol=1e-9
    )
    onp.testing.assert_allclose(
        hessian_form.error(lin_points), between.error(lin_points), rtol=1e-9
    )

    # Close to it, they're a good approximation.
    _, values = _perturb(variables, lin_points, seed=3, scale=1e-4)
    onp.testing.assert_allclose(
        jacobian_form.error(values), between.error(values), rtol=1e-3
    )


def test_relinearize_jacobian_form() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_vector_problem()
    jacobian_form = jaxlin.linearized.LinearizedJacobianFactor.make(
        jacobian_factor, ordering, lin_points
    )
    _, values = _perturb(variables, lin_points, seed=0)

    relinearized = jacobian_form.linearize(values, ordering)
    assert isinstance(relinearized, jaxlin.linear.JacobianFactor)
    assert isinstance(relinearized.noise_model, jaxlin.noises.UnitGaussian)
    assert relinearized.indices == (0, 1)
    assert relinearized.get_dims() == (2, 3)
    onp.testing.assert_allclose(
        relinearized.b, -jacobian_form.error_vector(values), atol=1e-12
    )

    # At zero delta, the new linear factor reproduces the captured factor's error.
    zero_delta = {0: onp.zeros(2), 1: onp.zeros(3)}
    onp.testing.assert_allclose(
        relinearized.error(zero_delta), jacobian_form.error(values), rtol=1e-9
    )

    # For vector variables, the expansion is exact everywhere.
    more_deltas, more_values = _perturb(variables, values, seed=1)
    onp.testing.assert_allclose(
        relinearized.error({ordering[v]: d for v, d in more_deltas.items()}),
        jacobian_form.error(more_values),
        rtol=1e-9,
    )


def test_relinearize_hessian_form() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_vector_problem()
    hessian_form = jaxlin.linearized.LinearizedHessianFactor.make(
        jaxlin.linear.HessianFactor.from_jacobian(jacobian_factor),
        ordering,
        lin_points,
    )
    deltas, values = _perturb(variables, lin_points, seed=0)

    relinearized = hessian_form.linearize(values, ordering)
    assert isinstance(relinearized, jaxlin.linear.HessianFactor)
    assert relinearized.indices == (0, 1)
    assert relinearized.get_dims() == (2, 3)

    # G' = G, g' = g - G dx, f' = f - 2 dx^T g + dx^T G dx.
    dx = onp.concatenate([deltas[v] for v in variables])
    G = onp.asarray(hessian_form.squared_term())
    g = onp.asarray(hessian_form.linear_term())
    f = float(hessian_form.constant_term())
    onp.testing.assert_allclose(relinearized.squared_term(), G, atol=1e-9)
    onp.testing.assert_allclose(relinearized.linear_term(), g - G @ dx, atol=1e-9)
    onp.testing.assert_allclose(
        relinearized.constant_term(), f - 2.0 * dx @ g + dx @ G @ dx, rtol=1e-9
    )

    zero_delta = {0: onp.zeros(2), 1: onp.zeros(3)}
    onp.testing.assert_allclose(
        relinearized.error(zero_delta), hessian_form.error(values), rtol=1e-9
    )

    more_deltas, more_values = _perturb(variables, values, seed=1)
    onp.testing.assert_allclose(
        relinearized.error({ordering[v]: d for v, d in more_deltas.items()}),
        hessian_form.error(more_values),
        rtol=1e-9,
    )


def test_relinearize_with_new_ordering() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_vector_problem()
    jacobian_form, hessian_form = _capture_both(ordering, lin_points, jacobian_factor)

    # Slots are re-mapped through whichever ordering is used for linearization.
    extra = jaxlin.geometry.SO2Variable()
    new_ordering = jaxlin.core.Ordering.make([extra, variables[1], variables[0]])
    assert jacobian_form.linearize(lin_points, new_ordering).indices == (2, 1)
    assert hessian_form.linearize(lin_points, new_ordering).indices == (2, 1)

    with pytest.raises(jaxlin.errors.KeyNotFoundError):
        jacobian_form.linearize(lin_points, jaxlin.core.Ordering.make([extra]))


def test_accessors() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.DiagonalGaussian.make_from_sigmas([0.5, 1.0, 2.0, 4.0])
    )
    jacobian_form, hessian_form = _capture_both(ordering, lin_points, jacobian_factor)
    whitened = jacobian_factor.whiten()

    assert jacobian_form.get_variables() == tuple(variables)
    assert jacobian_form.get_rows() == 4
    assert jacobian_form.get_dim() == 4
    assert hessian_form.get_dim() == 5
    onp.testing.assert_allclose(
        jacobian_form.get_A(variables[1]), whitened.A_matrices[1], atol=1e-12
    )
    onp.testing.assert_allclose(jacobian_form.get_b(), whitened.b, atol=1e-12)
    with pytest.raises(jaxlin.errors.KeyNotFoundError):
        jacobian_form.get_A(jaxlin.geometry.SE2Variable())

    A = onp.concatenate(whitened.A_matrices, axis=1)
    b = onp.asarray(whitened.b)
    onp.testing.assert_allclose(hessian_form.squared_term(), A.T @ A, atol=1e-9)
    onp.testing.assert_allclose(hessian_form.linear_term(), A.T @ b, atol=1e-9)

    # Linearization points are restricted to this factor's variables.
    assert hessian_form.lin_points.equals(lin_points)
    assert len(hessian_form.lin_points) == 2


def test_lin_points_restricted_to_factor_variables() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.UnitGaussian.make(4)
    )
    unrelated = jaxlin.core.RealVectorVariable[1]()
    jacobian_form = jaxlin.linearized.LinearizedJacobianFactor.make(
        jacobian_factor,
        jaxlin.core.Ordering.make(variables + [unrelated]),
        lin_points.set_value(unrelated, onp.zeros(1)),
    )
    assert unrelated not in jacobian_form.lin_points
    assert jacobian_form.lin_points.equals(lin_points)


def test_capture_with_unknown_slot() -> None:
    variables, ordering, lin_points, _ = _make_problem(
        jaxlin.noises.UnitGaussian.make(4)
    )
    jacobian_factor = jaxlin.linear.JacobianFactor.make(
        terms=[(0, onp.ones((4, 2))), (5, onp.ones((4, 3)))], b=onp.zeros(4)
    )
    with pytest.raises(jaxlin.errors.KeyNotFoundError):
        jaxlin.linearized.LinearizedJacobianFactor.make(
            jacobian_factor, ordering, lin_points
        )
    with pytest.raises(jaxlin.errors.KeyNotFoundError):
        jaxlin.linearized.LinearizedHessianFactor.make(
            jaxlin.linear.HessianFactor.from_jacobian(jacobian_factor),
            ordering,
            lin_points,
        )


def test_capture_with_missing_lin_point() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.UnitGaussian.make(4)
    )
    partial = lin_points.restrict(variables[:1])
    with pytest.raises(jaxlin.errors.KeyNotFoundError):
        jaxlin.linearized.LinearizedJacobianFactor.make(
            jacobian_factor, ordering, partial
        )
    with pytest.raises(jaxlin.errors.KeyNotFoundError):
        jaxlin.linearized.LinearizedHessianFactor.make(
            jaxlin.linear.HessianFactor.from_jacobian(jacobian_factor),
            ordering,
            partial,
        )


def test_missing_value_at_evaluation() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.UnitGaussian.make(4)
    )
    jacobian_form, _ = _capture_both(ordering, lin_points, jacobian_factor)
    with pytest.raises(jaxlin.errors.KeyNotFoundError):
        jacobian_form.error(lin_points.restrict(variables[1:]))


def test_capture_constrained_factor() -> None:
    _, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.ConstrainedGaussian.make_mixed([0.0, 1.0, 1.0, 1.0])
    )
    with pytest.raises(jaxlin.errors.UnsupportedOperationError):
        jaxlin.linearized.LinearizedJacobianFactor.make(
            jacobian_factor, ordering, lin_points
        )


def test_equals() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.UnitGaussian.make(4)
    )
    jacobian_form, hessian_form = _capture_both(ordering, lin_points, jacobian_factor)
    jacobian_form_copy, hessian_form_copy = _capture_both(
        ordering, lin_points, jacobian_factor
    )

    assert jacobian_form.equals(jacobian_form_copy)
    assert hessian_form.equals(hessian_form_copy)
    assert not jacobian_form.equals(hessian_form)
    assert not hessian_form.equals(jacobian_form)

    # Different linearization point.
    _, moved = _perturb(variables, lin_points, seed=0)
    jacobian_form_moved, hessian_form_moved = _capture_both(
        ordering, moved, jacobian_factor
    )
    assert not jacobian_form.equals(jacobian_form_moved)
    assert not hessian_form.equals(hessian_form_moved)

    # Different variables.
    other_variables = [jaxlin.core.RealVectorVariable[2](), variables[1]]
    other_ordering = jaxlin.core.Ordering.make(other_variables)
    other_lin_points = jaxlin.core.VariableAssignments.make_from_dict(
        {
            other_variables[0]: lin_points.get_value(variables[0]),
            other_variables[1]: lin_points.get_value(variables[1]),
        }
    )
    assert not jacobian_form.equals(
        jaxlin.linearized.LinearizedJacobianFactor.make(
            jacobian_factor, other_ordering, other_lin_points
        )
    )


def test_hessian_equals_ignores_constant_term() -> None:
    variables, ordering, lin_points, jacobian_factor = _make_vector_problem()
    hessian_factor = jaxlin.linear.HessianFactor.from_jacobian(jacobian_factor)
    G = onp.asarray(hessian_factor.squared_term())
    g = onp.asarray(hessian_factor.linear_term())

    def make(f: float, g_offset: float) -> jaxlin.linearized.LinearizedHessianFactor:
        return jaxlin.linearized.LinearizedHessianFactor.make(
            jaxlin.linear.HessianFactor.make(
                indices=(0, 1),
                G_blocks=[G[:2, :2], G[:2, 2:], G[2:, 2:]],
                g_blocks=[g[:2] + g_offset, g[2:]],
                f=f,
            ),
            ordering,
            lin_points,
        )

    assert make(f=1.0, g_offset=0.0).equals(make(f=5.0, g_offset=0.0))
    assert not make(f=1.0, g_offset=0.0).equals(make(f=1.0, g_offset=0.1))


def test_infinite_cost_is_logged() -> None:
    variable = jaxlin.geometry.SE2Variable()
    prior = jaxlin.geometry.PriorFactor.make(
        variable=variable,
        mu=jaxlie.SE2.identity(),
        noise_model=jaxlin.noises.ConstrainedGaussian.make_all(3),
    )

    messages: List[str] = []
    handler_id = logger.add(messages.append, level="WARNING")
    try:
        satisfied = jaxlin.core.VariableAssignments.make_from_dict(
            {variable: jaxlie.SE2.identity()}
        )
        assert prior.error(satisfied) == 0.0
        jax.effects_barrier()
        assert len(messages) == 0

        violated = satisfied.set_value(variable, jaxlie.SE2.from_xy_theta(0.1, 0, 0))
        assert onp.isposinf(prior.error(violated))
        jax.effects_barrier()
        assert len(messages) == 1
        assert "PriorFactor" in messages[0]
    finally:
        logger.remove(handler_id)


def test_infinite_cost_is_logged_under_jit() -> None:
    variable = jaxlin.geometry.SE2Variable()
    prior = jaxlin.geometry.PriorFactor.make(
        variable=variable,
        mu=jaxlie.SE2.identity(),
        noise_model=jaxlin.noises.ConstrainedGaussian.make_all(3),
    )

    @jax.jit
    def compute_error(value: jaxlie.SE2) -> jax.Array:
        return prior.error(
            jaxlin.core.VariableAssignments.make_from_dict({variable: value})
        )

    messages: List[str] = []
    handler_id = logger.add(messages.append, level="WARNING")
    try:
        assert compute_error(jaxlie.SE2.identity()) == 0.0
        jax.effects_barrier()
        assert len(messages) == 0

        assert onp.isposinf(compute_error(jaxlie.SE2.from_xy_theta(0.1, 0, 0)))
        jax.effects_barrier()
        assert len(messages) == 1
        assert "PriorFactor" in messages[0]
    finally:
        logger.remove(handler_id)


def test_print(capsys: pytest.CaptureFixture) -> None:
    _, ordering, lin_points, jacobian_factor = _make_problem(
        jaxlin.noises.UnitGaussian.make(4)
    )
    jacobian_form, hessian_form = _capture_both(ordering, lin_points, jacobian_factor)

    jacobian_form.print("jacobian form")
    out = capsys.readouterr().out
    assert "jacobian form" in out
    assert "SE2Variable[1]" in out
    assert "Linearization Point" in out

    hessian_form.print("hessian form")
    assert "hessian form" in capsys.readouterr().out
