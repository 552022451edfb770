"""
Setup script for MedKit.
"""

from setuptools import setup, find_packages

setup(
    name="medkit",
    version="0.1.0",
    description="Cross-fitted causal mediation analysis for multi-category exposures",
    author="MedKit Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.22.0",
        "pandas>=1.4.0",
        "scipy>=1.8.0",
        "scikit-learn>=1.2.0",
        "joblib>=1.1.0",
        "matplotlib>=3.5.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering",
    ],
    python_requires=">=3.10",
)
