from setuptools import setup

setup(
    name='cardledger',
    version='0.1.0',
    description='Upgradeable, permissioned ledger of collectible cards',
    author='Ziver-opensource',
    package_dir={'': 'src'},
    packages=['cardledger', 'cardledger.cli'],
    include_package_data=True,
    python_requires='>=3.8',
    install_requires=[
        'click>=7.0',
        'rich>=9.0'
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'cardledger = cardledger.cli.main:cli'
        ]
    },
    classifiers=[
        'Programming Language :: Python :: 3',
    ],
)
