from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="pulseflow",
    version="0.1.0",
    description="Time-windowed aggregation of pulsed-source neutron detector events",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="BSD-3-Clause",
    keywords=["neutron", "time of flight", "event mode", "nexus", "histogram", "pulsed source"],
    packages=find_packages(include=["pulseflow", "pulseflow.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Physics",
        "License :: OSI Approved :: BSD License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.20.0",
        "h5py>=3.0.0",
        "pyyaml>=5.4",
        "matplotlib>=3.3.0",
        "seaborn>=0.11.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "pulseflow=pulseflow.cli:main",
        ],
    },
)
