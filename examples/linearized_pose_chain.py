"""Capture a linearized pose chain and compare it against the nonlinear factors it came
from.

A chain of SE(2) poses is connected by between factors, with a prior on the first
pose. Each factor is linearized at an initial guess, captured as a linearized Jacobian
or Hessian factor, and then evaluated at perturbed values.

For a summary of options:

    python linearized_pose_chain.py --help

"""

from typing import List, Literal

import jax
import jaxlie
import numpy as onp
import tyro
from loguru import logger

import jaxlin

jax.config.update("jax_enable_x64", True)


def main(
    num_poses: int = 5,
    perturbation_scale: float = 0.05,
    form: Literal["jacobian", "hessian"] = "jacobian",
    seed: int = 0,
) -> None:
    """Linearize a pose chain, then evaluate the captured factors away from their
    linearization point.

    Args:
        num_poses: Number of poses in the chain.
        perturbation_scale: Standard deviation of the tangent-space perturbations.
        form: Which linearized factor type to capture.
        seed: Random seed for the perturbations.
    """
    variables = [jaxlin.geometry.SE2Variable() for _ in range(num_poses)]
    ordering = jaxlin.core.Ordering.make(variables)

    factors: List[jaxlin.core.FactorBase] = [
        jaxlin.geometry.PriorFactor.make(
            variable=variables[0],
            mu=jaxlie.SE2.identity(),
            noise_model=jaxlin.noises.DiagonalGaussian.make_from_sigmas(
                onp.array([0.1, 0.1, 0.05])
            ),
        )
    ]
    for i in range(num_poses - 1):
        factors.append(
            jaxlin.geometry.BetweenFactor.make(
                variables[i],
                variables[i + 1],
                jaxlie.SE2.from_xy_theta(1.0, 0.0, 0.1),
                noise_model=jaxlin.noises.IsotropicGaussian.make_from_sigma(3, 0.2),
            )
        )

    # Initial guess: slightly off from the measured chain.
    initial_assignments = jaxlin.core.VariableAssignments.make_from_dict(
        {
            variable: jaxlie.SE2.from_xy_theta(1.05 * i, 0.02 * i, 0.09 * i)
            for i, variable in enumerate(variables)
        }
    )

    with jaxlin.utils.stopwatch("Capturing linearized factors"):
        linearized_factors: List[jaxlin.linearized.LinearizedFactorBase] = []
        for factor in factors:
            jacobian_factor = factor.linearize(initial_assignments, ordering)
            assert isinstance(jacobian_factor, jaxlin.linear.JacobianFactor)
            if form == "jacobian":
                linearized_factors.append(
                    jaxlin.linearized.LinearizedJacobianFactor.make(
                        jacobian_factor, ordering, initial_assignments
                    )
                )
            else:
                linearized_factors.append(
                    jaxlin.linearized.LinearizedHessianFactor.make(
                        jaxlin.linear.HessianFactor.from_jacobian(jacobian_factor),
                        ordering,
                        initial_assignments,
                    )
                )

    # Perturb every pose in its tangent space.
    rng = onp.random.default_rng(seed)
    perturbed_assignments = initial_assignments.manifold_retract(
        {
            variable: rng.normal(
                scale=perturbation_scale, size=variable.get_local_parameter_dim()
            )
            for variable in variables
        }
    )

    with jaxlin.utils.stopwatch("Evaluating errors"):
        for values, label in (
            (initial_assignments, "initial"),
            (perturbed_assignments, "perturbed"),
        ):
            nonlinear_error = sum(float(f.error(values)) for f in factors)
            linearized_error = sum(float(f.error(values)) for f in linearized_factors)
            logger.info(
                "{} values: nonlinear error {:.6f}, linearized ({}) error {:.6f}",
                label,
                nonlinear_error,
                form,
                linearized_error,
            )

    # Re-linearizing at the perturbed values gives linear factors over the same slots.
    relinearized = [
        factor.linearize(perturbed_assignments, ordering)
        for factor in linearized_factors
    ]
    relinearized[-1].print("Last re-linearized factor:")


if __name__ == "__main__":
    tyro.cli(main)
