from setuptools import setup, find_packages

setup(
    name="garch-risk",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["calculate_risk", "config", "exceptions", "models"],
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
        "arch",
        "statsmodels",
        "tqdm",
        "psutil",
        "python-dotenv",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "garch-risk=calculate_risk:main",
        ],
    },
    python_requires=">=3.9",
)
