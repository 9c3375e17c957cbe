from setuptools import setup, find_packages


setup(
    name="labchain",
    version="0.1",
    packages=find_packages(include=["labchain", "labchain.*"]),
    description="Archive directories into signed, append-only delta chains and save them back.",
    author="labchain contributors",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
        "structlog>=24.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "labchain=labchain.cli:main",
        ]
    },
)
