from setuptools import setup, find_packages

setup(
    name="pyicar",
    version="0.1.0",
    description="Distributed domain state and forcing for a terrain-following"
    " atmospheric model",
    license="GPL",
    packages=find_packages(include=["pyicar*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "scipy",
        "mpi4py",
        "xarray",
        "netCDF4",
        "cftime",
        "pyyaml",
    ],
    zip_safe=False,
)
