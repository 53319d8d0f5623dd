"""
Minimal setup.py for building the respirometry processing package.
"""

from setuptools import find_packages, setup

config = dict(
    name="respcal",
    version="0.1.0",
    description="Metabolic rates from intermittent-flow respirometry logs",
    packages=find_packages(include=["respcal", "respcal.*"]),
    python_requires=">=3.8",
    install_requires=[
        "click",
        "gsw",
        "munch",
        "numpy",
        "pandas",
        "pyyaml",
        "scikit-learn",
        "scipy",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["respcal=respcal.__main__:cli"]},
)

setup(**config)
