import jax

# Comparisons against closed-form results are done in double precision.
jax.config.update("jax_enable_x64", True)
