from setuptools import setup, find_namespace_packages

setup(
    name="signage-device-client",
    version="0.1.0",
    description="Digital signage display client: registration, playlist sync, license enforcement and media caching",
    author="Matt Skillman",
    packages=find_namespace_packages(include=["src", "src.*"]),
    python_requires=">=3.8",
    install_requires=[
        "PyYAML>=6.0",
        "pyzmq>=25.0",
        "requests>=2.31.0",
        "python-socketio[client]>=5.8.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0,<9.1",
            "black>=23.0.0",
            "pylint>=2.17.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "signage-client=src.signage.service:main",
        ]
    },
)
