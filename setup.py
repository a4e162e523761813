from setuptools import setup, find_packages

setup(
    name="storefront-regression-harness",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    install_requires=[
        "playwright>=1.40.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0"
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0"
        ]
    },
    entry_points={
        "console_scripts": [
            "storefront-smoke=storefront_harness.cli:main"
        ]
    },
    python_requires=">=3.8",
)
