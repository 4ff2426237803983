from setuptools import setup, find_packages

setup(
    name="spatial_gev",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.20.0",
        "scipy>=1.6.0",
        "pyproj>=3.0.0",
    ],
    extras_require={
        "jax": [
            "jax>=0.4.0",
            "jaxlib>=0.4.0",
        ],
        "dev": [
            "pytest>=6.0",
            "pytest-cov>=2.10",
            "black>=21.0",
            "flake8>=3.8",
        ],
    },
    python_requires=">=3.9",
    description="Negative log-likelihoods for spatial GEV models with Gaussian-process and SPDE latent fields",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
