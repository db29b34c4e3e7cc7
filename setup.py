from setuptools import setup, find_namespace_packages

setup(
    name="mag-tracking-gateway",
    version="0.1.0",
    packages=find_namespace_packages(include=["packages.*"]),
    package_dir={"": "."},
    py_modules=["Gateway_bring_up", "Node_bring_up"],
    install_requires=[
        "numpy>=1.24.0",
        "scipy>=1.10.0",
        "paho-mqtt>=2.0.0",
        "rich>=13.0.0",
        "pyserial>=3.5",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.9",
)
