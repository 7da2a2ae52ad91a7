from setuptools import setup

with open("README.md") as f:
    readme = f.read()

_ = setup(
    name="certpilot",
    version="1.0.0",
    license="MIT",
    long_description=readme,
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    install_requires=[
        "cryptography>=42.0.8",
        "impacket~=0.12.0",
        "dnspython~=2.7.0",
        "argcomplete>=3.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    packages=[
        "certpilot",
        "certpilot.commands",
        "certpilot.commands.parsers",
        "certpilot.lib",
    ],
    entry_points={
        "console_scripts": ["certpilot=certpilot.entry:main"],
    },
    description="Certificate requests through certreq with PEM export",
)
