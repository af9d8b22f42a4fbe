from setuptools import setup, find_packages

DEV_DEPENDENCIES = [
    "pytest>=6",
    "pytest-xdist[psutil]>=2",
    "pytest-cov>=2.10.1",
    "coverage>=5",
    "pre-commit>=2.7",
    "black>=22.3.0",
    "flake8>=4.0.1",
]
MPI_DEPENDENCIES = ["mpi4py>=3.0.1"]
BASE_DEPENDENCIES = [
    "numpy>=1.22",
    "plum-dispatch>=2",
]

setup(
    name="mcstats",
    author="The mcstats Authors",
    license="Apache 2.0",
    description="mcstats : streaming statistics of correlated Monte Carlo data.",
    long_description="""mcstats accumulates the mean, variance, covariance and
         integrated autocorrelation time of long streams of vector-valued
         Monte Carlo samples, and merges the statistics of parallel workers
         through MPI or threads.""",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: MacOS :: MacOS X",
        "Operating System :: POSIX :: Linux",
        "Operating System :: Unix",
        "Topic :: Scientific/Engineering :: Physics",
    ],
    packages=find_packages(include=["mcstats*"]),
    install_requires=BASE_DEPENDENCIES,
    python_requires=">=3.10",
    extras_require={
        "dev": DEV_DEPENDENCIES,
        "mpi": MPI_DEPENDENCIES,
        "all": MPI_DEPENDENCIES + DEV_DEPENDENCIES,
    },
)
