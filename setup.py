from setuptools import setup, find_packages

setup(
    name="pymultilayer",
    version="0.1.0",
    description="Viscous and diffusive sub-step of a multilayer free-surface solver",
    license="GPL",
    packages=find_packages(include=["pymultilayer*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "xarray",
        "mpi4py",
        "pyyaml",
        "mpich; platform_system=='Linux' or platform_system=='Darwin'",
    ],
    zip_safe=False,
)
