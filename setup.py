import setuptools

setuptools.setup(
    name="modesource",
    version="0.1.0",
    python_requires=">=3.8",
    install_requires=[
        "matplotlib",
        "numpy",
        "pyyaml",
        "schematics",
        "scipy>=1.10",
        "shapely>=2.0",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
            "pytest-xdist",
        ],
        "dev": [
            "pylint",
            "pytype",
            "yapf",
        ],
    },
    packages=setuptools.find_packages(),
)
