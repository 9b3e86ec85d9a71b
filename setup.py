from setuptools import find_packages, setup

setup(
    name="jaxlin",
    version="0.0",
    description="Linearized factors and Gaussian noise models in Jax",
    url="http://github.com/brentyi/jaxlin",
    author="brentyi",
    author_email="brentyi@berkeley.edu",
    license="BSD",
    packages=find_packages(include=["jaxlin", "jaxlin.*"]),
    package_data={"jaxlin": ["py.typed"]},
    python_requires=">=3.8",
    install_requires=[
        "tyro",
        "frozendict",
        "jax>=0.4.0",
        "jaxlib",
        "jaxlie>=1.0.0",
        "jax_dataclasses>=1.0.0",
        "loguru",
        "numpy",
        "overrides",
        "termcolor",
    ],
    extras_require={
        "testing": [
            "pytest",
            "pytest-cov",
        ],
        "type-checking": [
            "mypy",
            "types-termcolor",
        ],
    },
)
