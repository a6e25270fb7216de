from setuptools import setup, find_packages

setup(
    name="pyboxmin",
    version="0.1.0",
    packages=find_packages(include=["pyboxmin", "pyboxmin.*"]),
    install_requires=["numpy", "scipy", "matplotlib"],
    extras_require={
        "forward": ["jax"],
        "test": ["pytest"],
    },
    author="Your Name",
    description="Box-constrained minimization using a logarithmic barrier method",
    license="MIT",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License"
    ]
)
