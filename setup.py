from setuptools import setup, find_packages


setup(
    name="scxq2",
    version="0.1",
    packages=find_packages(),
    description="Deterministic, content-addressable text compression with verifiable packs.",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    entry_points={
        "console_scripts": [
            "scxq2=scxq2.cli:main",
        ]
    },
)
