"""Package setup for VoIP Tax Engine."""

from setuptools import setup, find_packages

setup(
    name="voip-tax-engine",
    version="1.0.0",
    description="Federal, state and local tax calculation for VoIP and telecom services",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.10",
    install_requires=[
        "rich>=13.0",
        "pandas>=2.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "redis": ["redis>=5.0"],
        "test": ["pytest>=7.0", "redis>=5.0"],
    },
    entry_points={
        "console_scripts": [
            "voip-tax-engine=voip_tax_engine.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "Intended Audience :: Telecommunications Industry",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Telephony",
        "Topic :: Office/Business :: Financial :: Accounting",
    ],
    keywords="voip telecom tax usf e911 excise exemptions billing",
)
