from setuptools import find_packages, setup

setup( name='RavelerTools',
       version='0.1',
       description='Superpixel maps, tiles, and body-overlap analysis for Raveler stacks',
       packages=find_packages(exclude=('unit_tests',)),
       install_requires=[
           'numpy',
           'pandas',
           'Pillow',
           'jsonschema',
           'ruamel.yaml',
           'psutil'
       ],
       extras_require={
           'test': ['pytest']
       }
     )
