from setuptools import setup, find_packages

setup(
    name='climsdm',
    version='0.1.0',
    description='Species distribution modelling of habitat under historical and future climate',
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires='>=3.11',
    install_requires=[
        'numpy',
        'pandas',
        'geopandas',
        'shapely>=2',
        'xarray',
        'rioxarray',
        'rasterio',
        'affine',
        'scipy',
        'scikit-learn',
        'statsmodels>=0.14',
        'elapid',
        'pygbif',
        'requests',
        'typer',
        'typing_extensions',
        'tqdm',
        'pyyaml',
        'pydantic>=2',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'climsdm=climsdm.cli:app',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
)
