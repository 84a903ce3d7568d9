from setuptools import setup, find_namespace_packages

setup(
    name="reprovision",
    version="0.1.0",
    packages=find_namespace_packages(include=["reprovision", "reprovision.*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "rich",
        "requests",
        "python-dotenv",
        "srp",
        "toml",
        "rich-argparse",
        "cryptography>=43",
        "asn1crypto",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "reprovision=reprovision.cli:main",
        ],
    },
)
