from setuptools import setup, find_namespace_packages

setup(
    name='addman',
    version='0.1.0',
    package_dir={'': 'src'},
    packages=find_namespace_packages(where='src', include=['addman*']),
    python_requires='>=3.10',
    install_requires=[
        'requests',
        'PyYAML',
        'rich',
        'platformdirs',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            'addman=addman.cli:main',
        ],
    },
    # Include other metadata as needed
)
