from setuptools import find_packages, setup

setup(
    name="pseudolab",
    version="0.1.0",
    description="Multiphase optimal control by pseudospectral and trapezoidal collocation",
    author="pseudolab Authors",
    packages=find_packages(include=["pseudolab", "pseudolab.*"]),
    install_requires=[
        "numpy>=1.22.0",
        "scipy>=1.8.0",
        "casadi>=3.6.0",  # Expression graphs, derivatives and the IPOPT/SQP backends
    ],
    extras_require={
        "plot": ["matplotlib>=3.5.0"],  # Used by the example programs only
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Mathematics",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    keywords="optimal control, trajectory optimization, collocation, pseudospectral methods",
)
