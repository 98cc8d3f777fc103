from setuptools import setup, find_packages

setup(
    name="driftfix",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    description="Drift detection with validated, reversible preprocessing patches",
    author="DriftFix ML Team",
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
        "scikit-learn",
        "pydantic>=2.0.0,<3.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv",
        "structlog",
        "prometheus-client",
        "SQLAlchemy>=2.0",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
        ],
    },
)
