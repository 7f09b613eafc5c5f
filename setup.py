from setuptools import setup, find_packages

setup(
    name="lsm-simulator",
    version="0.1.0",
    description="Discrete event simulation of an LSM storage engine write path",
    author="adamfilli",
    packages=find_packages(exclude=["tests", "tests.*", "examples", "examples.*"]),
    install_requires=[
        "matplotlib",
        "pandas",
    ],
    extras_require={
        "tests": ["pytest"],
    },
    include_package_data=True,
    python_requires=">=3.11",
)
